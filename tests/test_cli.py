"""Tests for the command-line interface."""

from unittest.mock import patch

import pytest

from conftest import StubEngine, make_device
from powerscan import __version__
from powerscan._types import BackendType, DisplayMode
from powerscan.cli import (
    ERR_BAD_OPTION,
    apply_arguments,
    build_parser,
    build_registry,
    main,
    parse_timeout,
)
from powerscan.config import ScannerConfig
from powerscan.exceptions import UsageError

ALL = set(BackendType)


@pytest.fixture
def engines():
    return {backend: StubEngine(backend) for backend in BackendType}


@pytest.fixture
def run_main(engines, monkeypatch, tmp_path):
    """Run main() against stub engines with a clean environment."""
    for name in ("POWERSCAN_TIMEOUT", "POWERSCAN_MAX_CONCURRENCY", "POWERSCAN_PARALLEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("POWERSCAN_CREDENTIALS_PATH", str(tmp_path / "creds.yaml"))

    def run(*argv):
        with patch("powerscan.cli.build_engines", return_value=engines):
            return main(list(argv))

    return run


def parse(*argv, available=ALL):
    return build_parser(set(available)).parse_args(list(argv))


class TestParser:
    """Tests for argument parsing."""

    def test_range_arguments_keep_order(self):
        """Should record -s / -e / -m in command-line order."""
        args = parse("-s", "10.0.0.1", "-m", "10.1.0.0/30", "-e", "10.0.0.9")
        assert args.range_args == [
            ("start", "10.0.0.1"),
            ("mask", "10.1.0.0/30"),
            ("end", "10.0.0.9"),
        ]

    def test_unknown_option(self):
        """Should raise UsageError for unknown options."""
        with pytest.raises(UsageError):
            parse("--bogus")

    def test_display_modes_exclusive(self):
        """Should refuse two display modes."""
        with pytest.raises(UsageError):
            parse("-N", "-P")

    def test_help_lists_missing_libraries(self):
        """Should mention backends whose library is missing."""
        parser = build_parser(ALL - {BackendType.SNMP})
        assert "SNMP bus scan not enabled" in parser.format_help()


class TestApplyArguments:
    """Tests for applying options to the configuration."""

    @pytest.mark.parametrize("flags,level", [
        ((), 0),
        (("-U",), 0),
        (("-U", "-U"), 1),
        (("-U", "-U", "-U"), 2),
        (("-U",) * 6, 3),
        (("-S",), -1),
        (("-C",), 0),
    ])
    def test_usb_link_detail(self, flags, level):
        """Should raise the link detail level with each -U."""
        config = ScannerConfig()
        apply_arguments(config, parse(*flags))
        assert config.usb_link_detail == level

    def test_ipmi_options(self, caplog):
        """Should fall back to MD5 and force IPMI 2.0 with -L."""
        config = ScannerConfig()
        apply_arguments(config, parse("-b", "root", "-B", "pw", "-d", "SHA1", "-L", "17"))

        assert config.ipmi_username == "root"
        assert config.ipmi_password == "pw"
        assert config.ipmi_auth_type == "MD5"
        assert config.ipmi_cipher_suite_id == 17
        assert config.ipmi_version == "2.0"
        assert "Unknown authentication type (SHA1). Defaulting to MD5" in caplog.text

    def test_snmp_options(self):
        """Should copy SNMP options into the config."""
        config = ScannerConfig()
        apply_arguments(config, parse("-c", "private", "-l", "authPriv", "-u", "nut", "-w", "SHA"))

        assert config.snmp_community == "private"
        assert config.snmp_sec_level == "authPriv"
        assert config.snmp_sec_name == "nut"
        assert config.snmp_auth_protocol == "SHA"

    def test_misc_options(self):
        """Should apply display, quiet, port, serial and sequential options."""
        config = ScannerConfig()
        apply_arguments(config, parse("-P", "-q", "-p", "3494", "-E", "auto", "--sequential", "-D", "-D"))

        assert config.display_mode == DisplayMode.PARSABLE
        assert config.quiet is True
        assert config.nut_port == 3494
        assert config.serial_ports == "auto"
        assert config.parallel is False
        assert config.debug_level == 2


class TestParseTimeout:
    """Tests for -t parsing."""

    def test_valid(self):
        assert parse_timeout("12") == 12

    def test_fractional(self):
        """Should accept fractional seconds."""
        assert parse_timeout("2.5") == 2.5

    @pytest.mark.parametrize("bad", ["0", "-3", "soon", "-0.5", "nan", "inf"])
    def test_illegal(self, bad, caplog):
        """Should fall back to the default timeout."""
        assert parse_timeout(bad) == 5
        assert "Illegal timeout value, using default 5s" in caplog.text


class TestBuildRegistry:
    """Tests for folding range arguments."""

    def test_two_pairs(self):
        """Should build one range per -s/-e pair."""
        args = parse("-s", "10.0.0.1", "-e", "10.0.0.5", "-s", "10.0.1.1", "-e", "10.0.1.5")
        registry = build_registry(args.range_args)
        assert [(r.start, r.end) for r in registry] == [
            ("10.0.0.1", "10.0.0.5"),
            ("10.0.1.1", "10.0.1.5"),
        ]

    def test_trailing_half_range(self):
        """Should flush a lone address at the end."""
        registry = build_registry(parse("-e", "10.0.0.7").range_args)
        assert [(r.start, r.end) for r in registry] == [("10.0.0.7", "10.0.0.7")]

    def test_bad_cidr(self):
        """Should report a malformed CIDR as a usage error."""
        with pytest.raises(UsageError):
            build_registry(parse("-m", "10.0.0.0/99").range_args)

    def test_no_ranges(self):
        assert len(build_registry(None)) == 0


class TestMain:
    """Tests for the entry point."""

    def test_default_scan(self, run_main, engines, capsys):
        """Should print the USB devices found and exit 0."""
        engines[BackendType.USB].devices = [
            make_device(BackendType.USB, "auto", serial="A1"),
            make_device(BackendType.USB, "auto", serial="A2"),
        ]

        assert run_main("-P") == 0

        assert capsys.readouterr().out == (
            'USB:driver="usbhid-ups",port="auto",serial="A1"\n'
            'USB:driver="usbhid-ups",port="auto",serial="A2"\n'
        )

    def test_snmp_unavailable(self, run_main, engines, capsys):
        """Should print help and fail when -S cannot be honoured."""
        engines[BackendType.SNMP].available = False

        assert run_main("-s", "10.0.0.1", "-e", "10.0.0.5", "-S") == ERR_BAD_OPTION

        captured = capsys.readouterr()
        assert "usage: powerscan" in captured.out
        assert "WARNING" in captured.err
        assert all(not engine.calls for engine in engines.values())

    def test_engines_built_once(self, engines, monkeypatch, tmp_path):
        """Should build the engine roster a single time per run."""
        monkeypatch.setenv("POWERSCAN_CREDENTIALS_PATH", str(tmp_path / "creds.yaml"))
        with patch("powerscan.cli.build_engines", return_value=engines) as build:
            assert main(["-n", "-q"]) == 0
        assert build.call_count == 1

    def test_confpath_passed_to_simulation(self, run_main, engines, monkeypatch, tmp_path):
        """Should hand $NUT_CONFPATH to the simulation engine."""
        monkeypatch.setenv("NUT_CONFPATH", str(tmp_path))
        assert run_main("-n") == 0
        assert engines[BackendType.NUT_SIMULATION].calls[0][3] == str(tmp_path)

    def test_snmp_credentials_unavailable(self, run_main, engines):
        """Should refuse SNMP options without SNMP support."""
        engines[BackendType.SNMP].available = False
        assert run_main("-c", "public") == ERR_BAD_OPTION

    def test_ipmi_credentials_unavailable(self, run_main, engines):
        """Should refuse IPMI options without IPMI support."""
        engines[BackendType.IPMI].available = False
        assert run_main("-b", "admin") == ERR_BAD_OPTION

    def test_cidr_range(self, run_main, engines):
        """Should scan the whole CIDR network with the NUT engine."""
        assert run_main("-O", "-m", "10.0.0.0/30", "-q") == 0
        assert [c[:2] for c in engines[BackendType.NUT].calls] == [("10.0.0.0", "10.0.0.3")]

    def test_timeout_passed_to_engines(self, run_main, engines):
        """Should hand the -t timeout to the engines."""
        assert run_main("-n", "-t", "7") == 0
        assert engines[BackendType.NUT_SIMULATION].calls[0][2] == 7

    def test_help(self, run_main, capsys):
        """Should print help and exit 0."""
        assert run_main("-h") == 0
        assert "usage: powerscan" in capsys.readouterr().out

    def test_version(self, run_main, capsys):
        """Should print the version."""
        assert run_main("-V") == 0
        assert capsys.readouterr().out.strip() == f"powerscan {__version__}"

    def test_available(self, run_main, engines, capsys):
        """Should list available backends in order."""
        engines[BackendType.SNMP].available = False
        engines[BackendType.IPMI].available = False

        assert run_main("-a") == 0

        assert capsys.readouterr().out.split() == [
            "USB", "XML", "OLDNUT", "NUT_SIMULATION", "AVAHI", "EATON_SERIAL",
        ]

    def test_thread_override(self, run_main, engines):
        """Should accept -T and still complete the scan."""
        with patch("powerscan.budget.get_fd_limit", return_value=None):
            assert run_main("-n", "-T", "4") == 0

    def test_config_file(self, run_main, engines, tmp_path, capsys):
        """Should read settings from --config."""
        path = tmp_path / "powerscan.yaml"
        path.write_text("display:\n  mode: parsable\n")
        engines[BackendType.NUT_SIMULATION].devices = [
            make_device(BackendType.NUT_SIMULATION, "ups.dev"),
        ]

        assert run_main("--config", str(path), "-n") == 0
        assert capsys.readouterr().out == 'NUT_SIMULATION:driver="dummy-ups",port="ups.dev"\n'
