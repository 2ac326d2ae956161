#!/usr/bin/env python3
"""
Device jobs agent launcher.

Usage:
  python main.py --endpoint <endpoint> --client_cert <cert> --client_key <key> --ca_cert <ca>
  python main.py --transport simulation --client_id device-1
  python main.py --doctor
"""
import sys

from device_agent.cli import main

if __name__ == "__main__":
    sys.exit(main())
