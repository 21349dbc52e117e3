#!/usr/bin/env python3
"""
Test the main.py entry point functions
"""

import argparse
import os
import sys
from unittest.mock import Mock, patch

import pytest
from twisted.internet import defer

# Add the project directory to the path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from private_dns.config import DNSProxyConfig
from private_dns.forwarder import UpstreamForwarder
from private_dns.main import (
    _get_logging_config,
    _get_proxy_config,
    _handle_version_check,
    _initialize_service,
    _parse_arguments,
    _validate_port,
    main,
    start_dns_server,
)
from private_dns.policy import DomainPolicy
from private_dns.proxy import DNSProxyService, ProxyState


def make_reactor():
    """Mock reactor whose run() fires the callWhenRunning callbacks"""
    reactor = Mock()
    when_running = []
    reactor.callWhenRunning.side_effect = when_running.append
    reactor.run.side_effect = lambda **kwargs: [f() for f in when_running]
    return reactor


class TestMain:
    """Test main.py functions"""

    def test_parse_arguments(self):
        args = _parse_arguments(
            ["--config", "/test/config.cfg", "--port", "5353", "--address", "127.0.0.1"]
        )

        assert args.config == "/test/config.cfg"
        assert args.port == 5353
        assert args.address == "127.0.0.1"
        assert args.upstream is None

    def test_parse_arguments_rejects_bad_port(self):
        with pytest.raises(SystemExit):
            _parse_arguments(["--port", "70000"])

    def test_validate_port(self):
        assert _validate_port("53") == 53
        with pytest.raises(argparse.ArgumentTypeError):
            _validate_port("0")
        with pytest.raises(argparse.ArgumentTypeError):
            _validate_port("dns")

    def test_handle_version_check(self):
        mock_args = Mock()
        mock_args.version = False

        # Should not exit if version is False
        _handle_version_check(mock_args)

        mock_args.version = True
        with patch("sys.exit") as mock_exit:
            _handle_version_check(mock_args)
            mock_exit.assert_called_once_with(0)

    def test_get_logging_config(self, tmp_path):
        config = DNSProxyConfig(str(tmp_path / "missing.cfg"))
        args = _parse_arguments(["--loglevel", "DEBUG"])

        log_file, log_level, syslog = _get_logging_config(config, args)

        assert log_file == "none"
        assert log_level == "DEBUG"
        assert syslog is False

    def test_get_proxy_config_overrides(self, tmp_path):
        config = DNSProxyConfig(str(tmp_path / "missing.cfg"))
        args = _parse_arguments(
            [
                "--port",
                "8053",
                "--upstream",
                "9.9.9.9:53, 149.112.112.112:53",
                "--domains-file",
                "/tmp/domains.json",
            ]
        )

        proxy_config = _get_proxy_config(config, args)

        assert proxy_config["listen_port"] == 8053
        assert proxy_config["listen_address"] == "0.0.0.0"
        assert proxy_config["upstream_servers"] == ["9.9.9.9:53", "149.112.112.112:53"]
        assert proxy_config["domains_file"] == "/tmp/domains.json"
        assert proxy_config["timeout"] == 5.0

    def test_initialize_service(self, fake_reactor, domains_file):
        proxy_config = {
            "listen_port": 15353,
            "listen_address": "0.0.0.0",
            "max_in_flight": 10,
            "upstream_servers": ["9.9.9.9:53"],
            "timeout": 2.0,
            "domains_file": domains_file,
        }

        proxy_service = _initialize_service(proxy_config, fake_reactor)

        assert isinstance(proxy_service, DNSProxyService)
        assert isinstance(proxy_service.policy, DomainPolicy)
        assert isinstance(proxy_service.protocol.forwarder, UpstreamForwarder)
        assert proxy_service.protocol.forwarder.servers == (("9.9.9.9", 53),)
        assert proxy_service.protocol.max_in_flight == 10
        assert proxy_service.port == 15353
        assert proxy_service.interface == ""

    def test_start_dns_server_runs_service(self):
        reactor = make_reactor()
        proxy_service = Mock()
        proxy_service.startService.return_value = defer.succeed(None)
        proxy_service.state = ProxyState.RUNNING

        with patch("private_dns.main.signal.signal"):
            code = start_dns_server(proxy_service, reactor, Mock())

        assert code == 0
        proxy_service.startService.assert_called_once_with()
        reactor.addSystemEventTrigger.assert_called_once_with(
            "before", "shutdown", proxy_service.stopService
        )
        reactor.stop.assert_not_called()

    def test_start_dns_server_bind_failure(self):
        reactor = make_reactor()
        proxy_service = Mock()
        proxy_service.startService.return_value = defer.succeed(None)
        proxy_service.state = ProxyState.STOPPED

        with patch("private_dns.main.signal.signal"):
            code = start_dns_server(proxy_service, reactor, Mock())

        assert code == 1
        reactor.stop.assert_called_once_with()

    def test_main_invalid_upstream_exits(self, tmp_path, capsys):
        argv = [
            "--config",
            str(tmp_path / "missing.cfg"),
            "--upstream",
            "8.8.8.8",
            "--domains-file",
            str(tmp_path / "domains.json"),
        ]

        with patch("private_dns.main.setup_logging"):
            with pytest.raises(SystemExit) as excinfo:
                main(argv)

        assert excinfo.value.code == 1
        assert "Invalid configuration" in capsys.readouterr().err


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
