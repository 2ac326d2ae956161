"""
Command line interface for the device jobs agent.

Usage:
  device-agent --endpoint abcd123456wxyz-ats.iot.us-east-1.amazonaws.com \\
      --client_cert device.pem.crt --client_key device.private.key --ca_cert AmazonRootCA1.pem

  device-agent --transport simulation --client_id device-1   # no broker needed
  device-agent --doctor                                      # check configuration and exit
"""
import argparse
import sys
from typing import List, Optional

from device_agent.config import AgentConfig, ConfigurationError, DEFAULT_CLIENT_ID, DEFAULT_TOPIC, TRANSPORT_TYPES
from device_agent.log_setup import apply_verbosity, logger, OK_MARK, FAIL_MARK, VERBOSITY_CHOICES


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        prog="device-agent",
        description="Device agent that pulls jobs from the jobs service and reports completion",
    )
    parser.add_argument("--endpoint",
                        help='Your AWS IoT custom endpoint, not including a port. '
                             'Ex: "abcd123456wxyz-ats.iot.us-east-1.amazonaws.com"')
    parser.add_argument("--port", type=int, help="Broker port (default 8883)")
    parser.add_argument("--client_cert", help="Your client certificate")
    parser.add_argument("--client_key", help="Your client certificate key")
    parser.add_argument("--ca_cert", help="Your CA certificate")
    parser.add_argument("-v", "--verbosity", choices=VERBOSITY_CHOICES, default="info",
                        help="Log verbosity (default info)")
    parser.add_argument("--topic", default=DEFAULT_TOPIC,
                        help="The topic to publish and subscribe to")
    parser.add_argument("--client_id", default=DEFAULT_CLIENT_ID,
                        help="Client identity / thing name; randomized when empty")
    parser.add_argument("--transport", choices=TRANSPORT_TYPES, help="Transport backend type")
    parser.add_argument("--watchdog-timeout", dest="watchdog_timeout", type=float,
                        help="Seconds without liveness before the watchdog fires (default 30)")
    parser.add_argument("--solicit-interval", dest="solicit_interval", type=float,
                        help="Seconds between job requests (default 10)")
    parser.add_argument("--doctor", action="store_true", help="Check configuration and exit")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> AgentConfig:
    return AgentConfig.from_env(
        client_id=args.client_id,
        endpoint=args.endpoint,
        port=args.port,
        client_cert=args.client_cert,
        client_key=args.client_key,
        ca_cert=args.ca_cert,
        transport_type=args.transport,
        topic=args.topic,
        verbosity=args.verbosity,
        watchdog_timeout=args.watchdog_timeout,
        solicit_interval=args.solicit_interval,
    )


def doctor(config: AgentConfig) -> int:
    missing = config.missing_required_keys()
    if missing:
        print(f"{FAIL_MARK} Missing configuration: {', '.join(missing)}")
        return 1
    print(f"{OK_MARK} Configuration complete for {config.client_id} ({config.transport_type})")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    apply_verbosity(args.verbosity)
    config = build_config(args)

    if args.doctor:
        return doctor(config)

    try:
        config.validate()
    except ConfigurationError as e:
        logger.error(f"{FAIL_MARK} {e}")
        return 2

    from device_agent.main import run
    return run(config)


if __name__ == "__main__":
    sys.exit(main())
