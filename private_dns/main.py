#!/usr/bin/env python3
"""
Main entry point for PrivateDNS Proxy
Loads configuration, wires the components together and runs the reactor
"""

import argparse
import logging
import logging.handlers
import os
import signal
import sys

from private_dns.constants import (
    DNS_DEFAULT_PORT,
    DNS_QUERY_TIMEOUT,
    MAX_IN_FLIGHT_QUERIES,
    MAX_PORT_NUMBER,
    MIN_PORT_NUMBER,
)


def setup_logging(log_file=None, log_level="INFO", syslog=False):
    """Setup logging configuration"""
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    # Setup root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file and log_file.lower() != "none":
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir and not os.path.exists(log_dir):
                os.makedirs(log_dir, mode=0o755)

            file_handler = logging.handlers.RotatingFileHandler(
                log_file, maxBytes=10 * 1024 * 1024, backupCount=5
            )
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
        except OSError as e:
            print(f"Warning: Could not setup file logging to {log_file}: {e}")

    if syslog:
        try:
            syslog_handler = logging.handlers.SysLogHandler(address="/dev/log")
            syslog_formatter = logging.Formatter(
                "private-dns[%(process)d]: %(levelname)s - %(message)s"
            )
            syslog_handler.setFormatter(syslog_formatter)
            root_logger.addHandler(syslog_handler)
        except OSError as e:
            print(f"Warning: Could not setup syslog: {e}")

    # Route Twisted's own log events through the standard logging handlers
    from twisted.python import log

    log.PythonLoggingObserver(loggerName="twisted").start()


def _setup_signal_handlers(reactor, logger):
    """Setup signal handlers for graceful shutdown"""

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        reactor.callFromThread(reactor.stop)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)


def _validate_port(value):
    """Validate port number is in valid range"""
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid port number: {value}")
    if port < MIN_PORT_NUMBER or port > MAX_PORT_NUMBER:
        raise argparse.ArgumentTypeError(
            f"Port must be between {MIN_PORT_NUMBER} and {MAX_PORT_NUMBER}"
        )
    return port


def _parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Allowlist-filtering DNS proxy. Permitted domains are forwarded to "
        "upstream resolvers, everything else is answered with 127.0.0.1.",
        epilog="Configuration supports multiple DNS servers: "
        "server-addresses = 8.8.8.8:53,1.1.1.1:53",
    )
    parser.add_argument(
        "-c", "--config", default="/etc/private-dns/private-dns.cfg", help="Configuration file path"
    )
    parser.add_argument("-l", "--logfile", help="Log file path (overrides config)")
    parser.add_argument(
        "-L", "--loglevel", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Log level"
    )
    parser.add_argument("-p", "--port", type=_validate_port, help="Listen port (overrides config)")
    parser.add_argument("-a", "--address", help="Listen address (overrides config)")
    parser.add_argument(
        "-u",
        "--upstream",
        help="Upstream DNS servers (overrides ALL configured servers). "
        "Comma-separated IP:PORT entries, e.g. 8.8.8.8:53,1.1.1.1:53",
    )
    parser.add_argument(
        "-f", "--domains-file", help="Allowed domains JSON file (overrides config)"
    )
    parser.add_argument("-v", "--version", action="store_true", help="Show version")

    return parser.parse_args(argv)


def _handle_version_check(args):
    """Handle version check and exit if requested"""
    if args.version:
        from private_dns import __version__

        print(f"PrivateDNS version {__version__}")
        sys.exit(0)


def _load_configuration(config_path):
    """Load configuration from file"""
    from private_dns.config import DNSProxyConfig

    print(f"Loading configuration from: {config_path}")
    return DNSProxyConfig(config_path)


def _get_logging_config(config, args):
    """Get logging configuration from config and args"""
    log_file = args.logfile or config.get("log-file", "log-file")
    log_level = args.loglevel or config.get("log-file", "debug-level", "INFO")
    syslog = config.getboolean("log-file", "syslog", False)

    return log_file, log_level, syslog


def _get_proxy_config(config, args):
    """Get proxy configuration from config and args"""
    listen_port = args.port or config.getint("dns-proxy", "listen-port", DNS_DEFAULT_PORT)
    listen_address = args.address or config.get("dns-proxy", "listen-address", "0.0.0.0")
    max_in_flight = config.getint("dns-proxy", "max-in-flight", MAX_IN_FLIGHT_QUERIES)

    if args.upstream:
        upstream_servers = [s.strip() for s in args.upstream.split(",") if s.strip()]
    else:
        upstream_servers = config.get_upstream_servers()

    timeout = config.getfloat("forwarder-dns", "timeout", DNS_QUERY_TIMEOUT)
    domains_file = args.domains_file or config.get_domains_file()

    return {
        "listen_port": listen_port,
        "listen_address": listen_address,
        "max_in_flight": max_in_flight,
        "upstream_servers": upstream_servers,
        "timeout": timeout,
        "domains_file": domains_file,
    }


def _log_config(proxy_config, logger):
    """Log the effective configuration"""
    logger.info("Configuration loaded:")
    logger.info(f"  Listen: {proxy_config['listen_address']}:{proxy_config['listen_port']}")
    logger.info(f"  Allowed domains file: {proxy_config['domains_file']}")
    logger.info(f"  Upstream timeout: {proxy_config['timeout']}s")
    if proxy_config["max_in_flight"]:
        logger.info(f"  Max in-flight requests: {proxy_config['max_in_flight']}")
    else:
        logger.info("  Max in-flight requests: unlimited")


def _initialize_service(proxy_config, reactor):
    """Build policy, forwarder and proxy service

    Raises:
        InvalidConfigurationError: If an upstream server entry is invalid
    """
    from private_dns.forwarder import UpstreamForwarder
    from private_dns.policy import DomainPolicy
    from private_dns.proxy import DNSProxyService

    policy = DomainPolicy(proxy_config["domains_file"], reactor=reactor)
    forwarder = UpstreamForwarder(
        proxy_config["upstream_servers"], timeout=proxy_config["timeout"], reactor=reactor
    )

    interface = proxy_config["listen_address"]
    if interface == "0.0.0.0":
        interface = ""

    return DNSProxyService(
        policy,
        forwarder,
        port=proxy_config["listen_port"],
        interface=interface,
        max_in_flight=proxy_config["max_in_flight"],
        reactor=reactor,
    )


def start_dns_server(proxy_service, reactor, logger):
    """Run the reactor until shutdown

    Returns:
        Process exit code
    """
    from private_dns.proxy import ProxyState

    _setup_signal_handlers(reactor, logger)
    failures = []

    def check_started(_):
        if proxy_service.state != ProxyState.RUNNING:
            logger.error("DNS Proxy failed to start")
            failures.append(proxy_service.state)
            reactor.stop()

    def start():
        proxy_service.startService().addCallback(check_started)

    reactor.callWhenRunning(start)
    reactor.addSystemEventTrigger("before", "shutdown", proxy_service.stopService)

    reactor.run(installSignalHandlers=False)
    logger.info("PrivateDNS Proxy exited")

    return 1 if failures else 0


def main(argv=None):
    """Main entry point"""
    args = _parse_arguments(argv)
    _handle_version_check(args)

    from private_dns.forwarder import InvalidConfigurationError

    try:
        config = _load_configuration(args.config)

        log_file, log_level, syslog = _get_logging_config(config, args)
        setup_logging(log_file, log_level, syslog)
        logger = logging.getLogger("private_dns")

        logger.info("Starting PrivateDNS Proxy")

        proxy_config = _get_proxy_config(config, args)
        _log_config(proxy_config, logger)

        from twisted.internet import reactor

        proxy_service = _initialize_service(proxy_config, reactor)

    except InvalidConfigurationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(start_dns_server(proxy_service, reactor, logger))


if __name__ == "__main__":
    main()
