"""
Command-line entry point for the power device scanner.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import math
import sys
from pathlib import Path
from typing import Optional, Sequence

from . import __version__
from ._types import BACKEND_ORDER, IPMI_AUTH_TYPES, BackendType, DisplayMode
from .budget import ConcurrencyBudget
from .config import DEFAULT_NETWORK_TIMEOUT, ScannerConfig
from .engines import available_backends, build_engines
from .exceptions import UsageError
from .orchestrator import ScanOrchestrator
from .ranges import AddressRangeRegistry, RangeArgumentFolder

logger = logging.getLogger(__name__)

ERR_BAD_OPTION = -1

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Name printed by -a for each backend
AVAILABLE_NAMES = {
    BackendType.USB: "USB",
    BackendType.SNMP: "SNMP",
    BackendType.XML: "XML",
    BackendType.NUT: "OLDNUT",
    BackendType.NUT_SIMULATION: "NUT_SIMULATION",
    BackendType.AVAHI: "AVAHI",
    BackendType.IPMI: "IPMI",
    BackendType.EATON_SERIAL: "EATON_SERIAL",
}

# Backend flag -> backend
BACKEND_FLAGS = {
    "usb_scan": BackendType.USB,
    "snmp_scan": BackendType.SNMP,
    "xml_scan": BackendType.XML,
    "oldnut_scan": BackendType.NUT,
    "nut_simulation_scan": BackendType.NUT_SIMULATION,
    "avahi_scan": BackendType.AVAHI,
    "ipmi_scan": BackendType.IPMI,
    "eaton_serial": BackendType.EATON_SERIAL,
}

SNMP_OPTIONS = (
    "community", "sec_level", "sec_name", "auth_password",
    "priv_password", "auth_protocol", "priv_protocol",
)
IPMI_OPTIONS = ("ipmi_username", "ipmi_password", "ipmi_auth_type", "cipher_suite_id")


class ScannerArgumentParser(argparse.ArgumentParser):
    """Argument parser that reports bad input as UsageError."""

    def error(self, message):
        raise UsageError(message)


class RangeAction(argparse.Action):
    """Record -s / -e / -m in command-line order."""

    def __call__(self, parser, namespace, values, option_string=None):
        events = list(getattr(namespace, self.dest, None) or [])
        events.append((self.const, values))
        setattr(namespace, self.dest, events)


def build_parser(available: set[BackendType]) -> ScannerArgumentParser:
    """Build the argument parser; help text reflects the available backends."""
    notes = [
        f"* Options for {backend.description} scan not enabled: library not detected."
        for backend in BACKEND_ORDER
        if backend not in available
    ]
    parser = ScannerArgumentParser(
        prog="powerscan",
        description="powerscan: utility for detection of available power devices.",
        epilog="\n".join(notes) or None,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
    )

    scans = parser.add_argument_group("scan types")
    scans.add_argument("-C", "--complete_scan", action="store_true",
                       help="Scan all available devices except serial ports (default)")
    scans.add_argument("-U", "--usb_scan", action="count", default=0,
                       help="Scan USB devices. Specify twice or more to report more "
                            "detail on (change-prone) physical properties")
    scans.add_argument("-S", "--snmp_scan", action="store_true",
                       help="Scan SNMP devices using built-in mapping definitions")
    scans.add_argument("-M", "--xml_scan", action="store_true", help="Scan XML/HTTP devices")
    scans.add_argument("-O", "--oldnut_scan", action="store_true",
                       help="Scan NUT devices (old method, direct connect)")
    scans.add_argument("-A", "--avahi_scan", action="store_true",
                       help="Scan NUT devices (avahi method)")
    scans.add_argument("-n", "--nut_simulation_scan", action="store_true",
                       help="Scan for NUT simulated devices (.dev files in $NUT_CONFPATH)")
    scans.add_argument("-I", "--ipmi_scan", action="store_true", help="Scan IPMI devices")
    scans.add_argument("-E", "--eaton_serial", metavar="PORTS",
                       help="Scan serial Eaton devices (comma-separated ports, or 'auto')")
    scans.add_argument("-T", "--thread", metavar="N",
                       help="Limit the amount of scans running simultaneously")

    network = parser.add_argument_group("network specific options")
    network.add_argument("-t", "--timeout", metavar="SECONDS",
                         help=f"Network operation timeout (default {DEFAULT_NETWORK_TIMEOUT})")
    network.add_argument("-s", "--start_ip", dest="range_args", action=RangeAction,
                         const="start", metavar="IP", help="First IP address to scan")
    network.add_argument("-e", "--end_ip", dest="range_args", action=RangeAction,
                         const="end", metavar="IP", help="Last IP address to scan")
    network.add_argument("-m", "--mask_cidr", dest="range_args", action=RangeAction,
                         const="mask", metavar="CIDR",
                         help="Give a range of IP using CIDR notation, or 'auto', "
                              "'auto4', 'auto6' for the local subnets")

    snmp = parser.add_argument_group("SNMP v1 / v3 specific options")
    snmp.add_argument("-c", "--community", help="Set SNMP v1 community name (default = public)")
    snmp.add_argument("-l", "--secLevel", dest="sec_level",
                      help="Set the securityLevel used for SNMPv3 messages")
    snmp.add_argument("-u", "--secName", dest="sec_name",
                      help="Set the securityName used for authenticated SNMPv3 messages")
    snmp.add_argument("-W", "--authPassword", dest="auth_password",
                      help="Set the authentication pass phrase")
    snmp.add_argument("-X", "--privPassword", dest="priv_password",
                      help="Set the privacy pass phrase")
    snmp.add_argument("-w", "--authProtocol", dest="auth_protocol",
                      help="Set the authentication protocol (MD5, SHA, SHA256, SHA384 or SHA512)")
    snmp.add_argument("-x", "--privProtocol", dest="priv_protocol",
                      help="Set the privacy protocol (DES, AES, AES192 or AES256)")

    ipmi = parser.add_argument_group("IPMI specific options")
    ipmi.add_argument("-b", "--username", dest="ipmi_username", help="Set the username")
    ipmi.add_argument("-B", "--password", dest="ipmi_password", help="Set the password")
    ipmi.add_argument("-d", "--authType", dest="ipmi_auth_type",
                      help=f"Authentication type ({', '.join(IPMI_AUTH_TYPES)}; default MD5)")
    ipmi.add_argument("-L", "--cipher_suite_id", type=int,
                      help="Cipher suite id, forces IPMI 2.0 (default 3)")

    nut = parser.add_argument_group("NUT specific options")
    nut.add_argument("-p", "--port", type=int, help="Port number of remote NUT upsd")

    display = parser.add_argument_group("display options")
    modes = display.add_mutually_exclusive_group()
    modes.add_argument("-Q", "--disp_nut_conf_with_sanity_check", dest="display_mode",
                       action="store_const", const=DisplayMode.UPS_CONF_SANITY,
                       help="Display result in the ups.conf format with sanity-check warnings (default)")
    modes.add_argument("-N", "--disp_nut_conf", dest="display_mode",
                       action="store_const", const=DisplayMode.UPS_CONF,
                       help="Display result in the ups.conf format")
    modes.add_argument("-P", "--disp_parsable", dest="display_mode",
                       action="store_const", const=DisplayMode.PARSABLE,
                       help="Display result in a parsable format")

    misc = parser.add_argument_group("miscellaneous options")
    misc.add_argument("-q", "--quiet", action="store_true",
                      help="Display only scan result, no progress information")
    misc.add_argument("-D", "--nut_debug_level", action="count", default=0,
                      help="Raise debugging level")
    misc.add_argument("-V", "--version", action="store_true", help="Display the program version")
    misc.add_argument("-a", "--available", action="store_true",
                      help="Display available bus that can be scanned")
    misc.add_argument("-h", "--help", action="store_true", help="Display this help text")
    misc.add_argument("--config", type=Path, help="Path to config file")
    misc.add_argument("--sequential", action="store_true",
                      help="Run the backend scans one after another")

    return parser


def setup_logging(debug_level: int, log_level: str = "INFO") -> None:
    """Configure logging; each -D raises verbosity."""
    base = getattr(logging, str(log_level).upper(), logging.INFO)
    logging.basicConfig(
        level=logging.DEBUG if debug_level >= 2 else base,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
    logging.getLogger("powerscan").setLevel(logging.DEBUG if debug_level else base)


def parse_timeout(value: str) -> float:
    """Parse -t; anything that is not a positive number falls back to the default."""
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        timeout = 0.0
    if not math.isfinite(timeout) or timeout <= 0:
        logger.warning(f"Illegal timeout value, using default {DEFAULT_NETWORK_TIMEOUT}s")
        return DEFAULT_NETWORK_TIMEOUT
    return timeout


def requested_backends(args: argparse.Namespace) -> set[BackendType]:
    """Backends named explicitly on the command line."""
    return {backend for flag, backend in BACKEND_FLAGS.items() if getattr(args, flag)}


def check_option_availability(args: argparse.Namespace, available: set[BackendType]) -> None:
    """
    Reject options that need a backend whose library is missing.

    Raises:
        UsageError: naming the first such option group
    """
    if BackendType.SNMP not in available:
        if any(getattr(args, name) is not None for name in SNMP_OPTIONS):
            raise UsageError("SNMP options given but SNMP scan is not available")
    if BackendType.IPMI not in available:
        if any(getattr(args, name) is not None for name in IPMI_OPTIONS):
            raise UsageError("IPMI options given but IPMI scan is not available")

    for backend in requested_backends(args):
        if backend not in available:
            raise UsageError(f"{backend.display_name} scan was requested but is not available")


def apply_arguments(config: ScannerConfig, args: argparse.Namespace) -> None:
    """Override configuration with command-line options."""
    if args.timeout is not None:
        config.timeout = parse_timeout(args.timeout)

    for name in SNMP_OPTIONS:
        value = getattr(args, name)
        if value is not None:
            setattr(config, "snmp_community" if name == "community" else f"snmp_{name}", value)

    if args.ipmi_username is not None:
        config.ipmi_username = args.ipmi_username
    if args.ipmi_password is not None:
        config.ipmi_password = args.ipmi_password
    if args.ipmi_auth_type is not None:
        if args.ipmi_auth_type in IPMI_AUTH_TYPES:
            config.ipmi_auth_type = args.ipmi_auth_type
        else:
            logger.warning(f"Unknown authentication type ({args.ipmi_auth_type}). Defaulting to MD5")
            config.ipmi_auth_type = "MD5"
    if args.cipher_suite_id is not None:
        config.ipmi_cipher_suite_id = args.cipher_suite_id
        config.ipmi_version = "2.0"

    if args.port is not None:
        config.nut_port = args.port
    if args.eaton_serial is not None:
        config.serial_ports = args.eaton_serial

    # -1 library default; the first -U (or a scan of everything) selects 0
    level = min(-1 + args.usb_scan, 3)
    if args.complete_scan or not requested_backends(args):
        level = max(level, 0)
    config.usb_link_detail = level

    if args.display_mode is not None:
        config.display_mode = args.display_mode
    config.quiet = args.quiet
    config.debug_level = args.nut_debug_level
    if args.sequential:
        config.parallel = False


def build_registry(range_args) -> AddressRangeRegistry:
    """
    Fold the ordered -s / -e / -m arguments into address ranges.

    Raises:
        UsageError: if a CIDR specification is malformed
    """
    registry = AddressRangeRegistry()
    folder = RangeArgumentFolder(registry)
    for kind, value in range_args or []:
        try:
            getattr(folder, kind)(value)
        except ValueError as e:
            raise UsageError(f"Invalid -m argument {value}: {e}") from e
    folder.flush()
    return registry


def print_available(available: set[BackendType]) -> None:
    for backend in BACKEND_ORDER:
        if backend in available:
            print(AVAILABLE_NAMES[backend])


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for powerscan."""
    engines = build_engines()
    available = available_backends(engines)
    parser = build_parser(available)

    try:
        args = parser.parse_args(argv)
    except UsageError as e:
        return usage_error(parser, str(e))

    if args.help:
        parser.print_help(sys.stdout)
        return 0
    if args.version:
        print(f"powerscan {__version__}")
        return 0
    if args.available:
        print_available(available)
        return 0

    # Load configuration
    if args.config:
        config = ScannerConfig.from_yaml(args.config)
    else:
        config = ScannerConfig.from_env()

    setup_logging(args.nut_debug_level, config.log_level)

    try:
        check_option_availability(args, available)
        apply_arguments(config, args)

        # Load credentials from separate file
        config.load_credentials()

        for warning in config.validate():
            logger.warning(f"Config: {warning}")

        budget = ConcurrencyBudget(default=config.max_concurrency)
        if args.thread is not None:
            budget.apply_override(args.thread)

        registry = build_registry(args.range_args)

        orchestrator = ScanOrchestrator(
            config,
            registry,
            requested=requested_backends(args),
            scan_all=args.complete_scan,
            engines=engines,
            budget=budget,
        )
        return asyncio.run(orchestrator.run())

    except UsageError as e:
        return usage_error(parser, str(e))


def usage_error(parser: argparse.ArgumentParser, message: str) -> int:
    """Show help and a warning for bad command-line input."""
    parser.print_help(sys.stdout)
    print(
        f"\n\nWARNING: Some error has occurred while processing 'powerscan' "
        f"command-line arguments ({message}), see more details above the usage help text.\n",
        file=sys.stderr,
    )
    return ERR_BAD_OPTION


if __name__ == "__main__":
    sys.exit(main())
