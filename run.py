#!/usr/bin/env python3
"""
Network resources injector webhook
"""

from dotenv import load_dotenv

# environment first, settings are read from it
load_dotenv()

from network_resources_injector.orchestrator import cli

if __name__ == "__main__":
    cli()
