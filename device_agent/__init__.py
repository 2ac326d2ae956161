"""Device jobs agent: pulls jobs from the jobs service over MQTT and reports completion."""

__version__ = "1.0.0"
