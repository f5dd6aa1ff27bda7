#!/usr/bin/env python

import argparse
from argparse import BooleanOptionalAction
import asyncio
import json
import logging
import os
import signal
import sys
from typing import Optional

from .core.config_schema import (
    apply_connection_environment,
    apply_environment,
    apply_mqtt_url,
    import_class,
    parse_json_option,
    validate_config,
)
from .core.constants import (
    DEFAULT_FIELD_MAP,
    DEFAULT_HEALTH_CHECK_INTERVAL,
    DEFAULT_LOGGING_INTERVAL,
    DEFAULT_LOGGING_TIME_TO_LIVE,
    DEFAULT_MQTT_INTERVAL,
    DEFAULT_MQTT_PORT,
    DEFAULT_MQTT_TOPIC,
    DEFAULT_VALUE_TIMEOUT,
    DEFAULT_VALUE_TIMEOUT_INCR,
    DEFAULT_VALUE_TRIES,
    EXIT_CODE_RESTART_REQUIRED,
    MQTT_ENCODINGS,
)
from .core.exceptions import ConfigError, TransportError, ValidationError
from .core.field_map import parse_field_map
from .core.logging_config import configure_logging
from .core.mqtt_publisher import MQTTPublisher
from .core.orchestrator import Orchestrator
from .core.retry import RetryPolicy


daemon_args = None

# Global instances
mqtt_publisher: Optional[MQTTPublisher] = None
orchestrator: Optional[Orchestrator] = None


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog='vbus2mqtt',
        description='A RESOL VBus to MQTT bridge',
        epilog='Have a lot of fun!')

    # MQTT settings
    parser.add_argument('-m', '--mqtt_host', type=str, default='localhost',
                       help='The hostname or mqtt://, mqtts:// URL of the MQTT server. Default is localhost')
    parser.add_argument('--mqtt_port', type=int, default=DEFAULT_MQTT_PORT,
                       help='The port of the MQTT server. Default is 1883')
    parser.add_argument('--mqtt_keepalive', type=int, default=30,
                       help='The keep alive interval for the MQTT server connection in seconds. Default is 30')
    parser.add_argument('--mqtt_clientid', type=str, default='vbus2mqtt',
                       help='The clientid to send to the MQTT server. Default is vbus2mqtt')
    parser.add_argument('-u', '--mqtt_user', type=str,
                       help='The username for the MQTT server connection.')
    parser.add_argument('-p', '--mqtt_password', type=str,
                       help='The password for the MQTT server connection.')
    parser.add_argument('-t', '--mqtt_topic', type=str, default=DEFAULT_MQTT_TOPIC,
                       help='The root topic to publish MQTT messages. Default is resol')
    parser.add_argument('--mqtt_tls', action=BooleanOptionalAction, default=False,
                       help='Use SSL/TLS encryption for MQTT connection.')
    parser.add_argument('--mqtt_tls_version', type=str, default='TLSv1.2',
                       help='The TLS version to use for MQTT. One of TLSv1, TLSv1.1, TLSv1.2. Default is TLSv1.2')
    parser.add_argument('--mqtt_verify_mode', type=str, default='CERT_REQUIRED',
                       help='The SSL certificate verification mode. One of CERT_NONE, CERT_OPTIONAL, CERT_REQUIRED. Default is CERT_REQUIRED')
    parser.add_argument('--mqtt_ssl_ca_path', type=str,
                       help='The SSL certificate authority file to verify the MQTT server.')
    parser.add_argument('--mqtt_tls_no_verify', action=BooleanOptionalAction, default=False,
                       help='Do not verify SSL/TLS constraints like hostname.')
    parser.add_argument('--mqtt_interval', type=float, default=DEFAULT_MQTT_INTERVAL,
                       help='Interval in seconds in which data is published to MQTT. 0 disables MQTT. Default is 5')
    parser.add_argument('--mqtt_encoding', type=str, choices=list(MQTT_ENCODINGS), default='json',
                       help='Encoding of the root topic payload. Default is json')

    # VBus settings
    parser.add_argument('--connection_class', type=str,
                       help='The bus connection class as package.module:ClassName.')
    parser.add_argument('--connection_options', type=str, default='{}',
                       help='JSON object (or path to a JSON file) passed to the connection class.')
    parser.add_argument('--specification_class', type=str,
                       help='The field specification class as package.module:ClassName.')
    parser.add_argument('--field_map', type=str,
                       help='JSON object (or path to a JSON file) with the values/header field map.')
    parser.add_argument('--logging_interval', type=float, default=DEFAULT_LOGGING_INTERVAL,
                       help='Consolidation interval in seconds. Default is 10')
    parser.add_argument('--logging_ttl', type=float, default=DEFAULT_LOGGING_TIME_TO_LIVE,
                       help='Time to live of consolidated headers in seconds. 0 keeps them forever. Default is 60')
    parser.add_argument('--value_timeout', type=float, default=DEFAULT_VALUE_TIMEOUT,
                       help='Initial timeout of value get/set requests in seconds. Default is 0.5')
    parser.add_argument('--value_timeout_incr', type=float, default=DEFAULT_VALUE_TIMEOUT_INCR,
                       help='Timeout increment per retry in seconds. Default is 0.5')
    parser.add_argument('--value_tries', type=int, default=DEFAULT_VALUE_TRIES,
                       help='Number of attempts for value get/set requests. Default is 3')
    parser.add_argument('--save', action=BooleanOptionalAction, default=False,
                       help='Ask the controller to persist written setpoints.')

    # Monitoring and reliability settings
    parser.add_argument('--health_check_interval', type=float, default=DEFAULT_HEALTH_CHECK_INTERVAL,
                       help='Health check interval in seconds. Default is 0 (disabled)')

    # General settings
    parser.add_argument('-c', '--config', type=str, default='/etc/vbus2mqtt.conf',
                       help='The path to the config file. Default is /etc/vbus2mqtt.conf')
    parser.add_argument('-z', '--timestamp', default=False, action='store_true',
                       help='Publish timestamps for all topics, e.g. for monitoring purposes.')
    parser.add_argument('-v', '--verbose', default=False, action='store_true',
                       help='Be verbose while running.')
    parser.add_argument('--log-level', type=str, choices=['CRITICAL','ERROR','WARNING','INFO','DEBUG','NOTSET'], default='INFO',
                       help='Logging level (default: INFO). Overridden by --verbose.')
    parser.add_argument('--log-format', type=str, choices=['text','json'], default='text',
                       help='Logging format: text or json (default: text).')

    return parser.parse_args(argv)


INT_KEYS = ('mqtt_port', 'mqtt_keepalive', 'value_tries')
FLOAT_KEYS = ('mqtt_interval', 'logging_interval', 'logging_ttl', 'value_timeout',
              'value_timeout_incr', 'health_check_interval')
BOOL_KEYS = ('mqtt_tls', 'mqtt_tls_no_verify', 'save', 'timestamp', 'verbose')
STR_KEYS = ('mqtt_host', 'mqtt_clientid', 'mqtt_user', 'mqtt_password', 'mqtt_topic',
            'mqtt_tls_version', 'mqtt_verify_mode', 'mqtt_ssl_ca_path', 'mqtt_encoding',
            'connection_class', 'specification_class', 'log_level', 'log_format')
JSON_KEYS = ('connection_options', 'field_map')


def parse_config(ns):
    """Overlay the JSON config file and the environment onto parsed arguments."""
    if os.path.isfile(ns.config):
        try:
            with open(ns.config, "r") as config_file:
                data = json.load(config_file)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Cannot read config file {ns.config}: {exc}") from exc

        for key, value in data.items():
            if key in INT_KEYS or key in FLOAT_KEYS:
                conv = int if key in INT_KEYS else float
                try:
                    value = conv(value)
                except (TypeError, ValueError) as exc:
                    raise ConfigError(
                        f"{ns.config}: {key} must be a number, got {value!r}"
                    ) from exc
            elif key in BOOL_KEYS:
                value = str(value).lower() == 'true'
            elif key in STR_KEYS:
                value = str(value)
            elif key not in JSON_KEYS:
                logging.warning("Unknown config key %s ignored", key)
                continue
            setattr(ns, key, value)

    apply_environment(ns)
    apply_mqtt_url(ns)

    ns.connection_options = apply_connection_environment(
        parse_json_option('connection_options', ns.connection_options) or {}
    )
    ns.field_map = parse_json_option('field_map', ns.field_map) or DEFAULT_FIELD_MAP

    validate_config(ns)
    return ns


def shutdown(task):
    logging.info('Shutdown...')
    task.cancel()


async def start_vbus_bridge():
    global daemon_args, mqtt_publisher, orchestrator

    logging.info("Starting VBus2MQTT bridge")
    loop = asyncio.get_running_loop()
    current = asyncio.current_task()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, shutdown, current)

    connection_class = import_class(daemon_args.connection_class)
    specification_class = import_class(daemon_args.specification_class)
    field_map = parse_field_map(daemon_args.field_map)

    mqtt_publisher = MQTTPublisher(
        host=daemon_args.mqtt_host,
        port=daemon_args.mqtt_port,
        keepalive=daemon_args.mqtt_keepalive,
        clientid=daemon_args.mqtt_clientid,
        base_topic=daemon_args.mqtt_topic,
        enable_timestamp=daemon_args.timestamp,
        tls_enabled=daemon_args.mqtt_tls,
        tls_version=daemon_args.mqtt_tls_version,
        verify_mode_name=daemon_args.mqtt_verify_mode,
        ca_path=daemon_args.mqtt_ssl_ca_path,
        tls_no_verify=daemon_args.mqtt_tls_no_verify,
        username=daemon_args.mqtt_user,
        password=daemon_args.mqtt_password,
        verbose=daemon_args.verbose
    )

    orchestrator = Orchestrator(
        connection_class(**daemon_args.connection_options),
        specification_class(),
        mqtt_publisher,
        field_map,
        logging_interval=daemon_args.logging_interval,
        logging_ttl=daemon_args.logging_ttl,
        mqtt_interval=daemon_args.mqtt_interval,
        encoding=daemon_args.mqtt_encoding,
        value_policy=RetryPolicy(
            timeout=daemon_args.value_timeout,
            increment=daemon_args.value_timeout_incr,
            attempts=daemon_args.value_tries,
        ),
        save=daemon_args.save,
        health_check_interval=daemon_args.health_check_interval,
    )

    try:
        if daemon_args.mqtt_interval > 0:
            logging.debug('Starting MQTT logging')
            mqtt_publisher.initialize()
            mqtt_publisher.connect()
            mqtt_publisher.start_loop()
        await orchestrator.run()
    finally:
        await stop_vbus_bridge()


async def stop_vbus_bridge():
    global mqtt_publisher, orchestrator
    logging.info("Stopping VBus2MQTT bridge")

    if mqtt_publisher:
        mqtt_publisher.disconnect()
        mqtt_publisher.stop_loop()

    if orchestrator:
        await orchestrator.close()


def main(argv=None):
    global daemon_args

    daemon_args = parse_args(argv)
    configure_logging(daemon_args.log_level, daemon_args.log_format, daemon_args.verbose)
    try:
        parse_config(daemon_args)
    except (ConfigError, ValidationError) as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1
    # Config file may change level/format
    configure_logging(daemon_args.log_level, daemon_args.log_format, daemon_args.verbose)

    try:
        asyncio.run(start_vbus_bridge())
    except asyncio.CancelledError:
        logging.info('Bye!')
        return 0
    except ConfigError as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1
    except TransportError:
        logging.exception("Fatal transport error, restart required")
        return EXIT_CODE_RESTART_REQUIRED
    return 0


if __name__ == "__main__":
    sys.exit(main())
