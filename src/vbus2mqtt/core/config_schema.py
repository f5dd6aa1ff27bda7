"""Config schema and validation for vbus2mqtt (Py 3.12)."""

from __future__ import annotations

import importlib
import json
import logging
import os
from typing import Any, Mapping
from urllib.parse import unquote, urlsplit

from .constants import DEFAULT_MQTT_PORT, DEFAULT_MQTT_TLS_PORT, MQTT_ENCODINGS
from .exceptions import ConfigError, ValidationError


ALLOWED_TLS: set[str] = {"TLSv1", "TLSv1.1", "TLSv1.2"}
ALLOWED_VERIFY: set[str] = {"CERT_NONE", "CERT_OPTIONAL", "CERT_REQUIRED"}

# Environment variables of the container deployment: name -> (attribute, type)
ENVIRONMENT: dict[str, tuple[str, type]] = {
    "CONNECTION_CLASS_NAME": ("connection_class", str),
    "CONNECTION_OPTIONS": ("connection_options", str),
    "SPECIFICATION_CLASS_NAME": ("specification_class", str),
    "LOGGING_INTERVAL": ("logging_interval", float),
    "LOGGING_TIME_TO_LIVE": ("logging_ttl", float),
    "MQTT_INTERVAL": ("mqtt_interval", float),
    "MQTT_CONNECT_HOST": ("mqtt_host", str),
    "MQTT_CONNECT_PORT": ("mqtt_port", int),
    "MQTT_CONNECT_CLIENT_ID": ("mqtt_clientid", str),
    "MQTT_CONNECT_USERNAME": ("mqtt_user", str),
    "MQTT_CONNECT_PASSWORD": ("mqtt_password", str),
    "MQTT_TOPIC": ("mqtt_topic", str),
    "MQTT_ENCODING": ("mqtt_encoding", str),
    "MQTT_PACKET_FIELD_MAP": ("field_map", str),
}

# Single bus connection options, merged over CONNECTION_OPTIONS
CONNECTION_OPTION_ENVIRONMENT: dict[str, str] = {
    "CONNECTION_OPTIONS_HOST": "host",
    "CONNECTION_OPTIONS_PASSWORD": "password",
}

# URL scheme -> TLS enabled
MQTT_URL_SCHEMES: dict[str, bool] = {"mqtt": False, "tcp": False, "mqtts": True, "ssl": True}


def _in_range(name: str, val: float, lo: float, hi: float) -> None:
    if not (lo <= val <= hi):
        raise ValidationError(f"{name} must be between {lo} and {hi}, got {val}")


def apply_environment(ns: Any, environ: Mapping[str, str] | None = None) -> None:
    """Override attributes of `ns` from the deployment environment variables."""
    environ = os.environ if environ is None else environ
    for env_name, (attr, conv) in ENVIRONMENT.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            setattr(ns, attr, conv(raw))
        except ValueError as exc:
            raise ConfigError(f"{env_name}: cannot convert {raw!r}") from exc


def apply_connection_environment(
    options: Mapping[str, Any], environ: Mapping[str, str] | None = None
) -> dict[str, Any]:
    """Return `options` with the single-option environment variables merged in."""
    if not isinstance(options, Mapping):
        raise ConfigError("connection_options must be a JSON object")
    environ = os.environ if environ is None else environ
    merged = dict(options)
    for env_name, key in CONNECTION_OPTION_ENVIRONMENT.items():
        if environ.get(env_name):
            merged[key] = environ[env_name]
    return merged


def apply_mqtt_url(ns: Any) -> None:
    """Split an ``mqtt://`` or ``mqtts://`` URL in `mqtt_host` into its parts.

    Host, port, TLS and credentials are taken from the URL; a TLS URL without
    a port moves the default port to 8883. Plain hostnames are left alone.
    """
    host = getattr(ns, "mqtt_host", None) or ""
    if "://" not in host:
        return
    try:
        url = urlsplit(host)
        port = url.port
    except ValueError as exc:
        raise ConfigError(f"mqtt_host: invalid URL {host!r}: {exc}") from exc

    scheme = url.scheme.lower()
    if scheme not in MQTT_URL_SCHEMES:
        raise ConfigError(
            f"mqtt_host: unsupported scheme {url.scheme!r}, "
            f"expected one of {', '.join(MQTT_URL_SCHEMES)}"
        )
    if not url.hostname:
        raise ConfigError(f"mqtt_host: no hostname in {host!r}")

    ns.mqtt_host = url.hostname
    tls = MQTT_URL_SCHEMES[scheme]
    if tls:
        ns.mqtt_tls = True
    if port is not None:
        ns.mqtt_port = port
    elif tls and getattr(ns, "mqtt_port", None) == DEFAULT_MQTT_PORT:
        ns.mqtt_port = DEFAULT_MQTT_TLS_PORT
    if url.username and not getattr(ns, "mqtt_user", None):
        ns.mqtt_user = unquote(url.username)
    if url.password and not getattr(ns, "mqtt_password", None):
        ns.mqtt_password = unquote(url.password)


def parse_json_option(name: str, value: Any) -> Any:
    """Accept an already parsed object, inline JSON, or a path to a JSON file."""
    if value is None or isinstance(value, (dict, list)):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        if not text.startswith(("{", "[")):
            with open(text, "r") as fh:
                return json.load(fh)
        return json.loads(text)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"{name}: cannot load JSON from {text!r}: {exc}") from exc


def import_class(dotted: str) -> type:
    """Resolve ``package.module:ClassName`` (or ``package.module.ClassName``)."""
    if ":" in dotted:
        module_name, _, attr = dotted.partition(":")
    else:
        module_name, _, attr = dotted.rpartition(".")
    if not module_name or not attr:
        raise ConfigError(f"Invalid class path: {dotted!r}")
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attr)
    except (ImportError, AttributeError) as exc:
        raise ConfigError(f"Cannot import {dotted!r}: {exc}") from exc


def validate_config(ns: Any) -> None:
    """Validate critical configuration constraints.

    Raises ConfigError/ValidationError on invalid values.
    """
    port = getattr(ns, "mqtt_port", None)
    if port is None:
        raise ConfigError("Missing required port: mqtt_port")
    _in_range("mqtt_port", int(port), 1, 65535)

    for name in ("connection_class", "specification_class"):
        if not getattr(ns, name, None):
            raise ConfigError(f"Missing required setting: {name}")

    for name in ("logging_interval", "value_timeout"):
        val = getattr(ns, name, None)
        if val is None:
            raise ConfigError(f"Missing required interval: {name}")
        if float(val) <= 0:
            raise ValidationError(f"{name} must be > 0, got {val}")

    for name in ("logging_ttl", "mqtt_interval", "value_timeout_incr", "health_check_interval"):
        val = float(getattr(ns, name, 0) or 0)
        if val < 0:
            raise ValidationError(f"{name} must be >= 0, got {val}")

    _in_range("value_tries", int(getattr(ns, "value_tries", 1)), 1, 100)

    encoding = getattr(ns, "mqtt_encoding", "json")
    if encoding not in MQTT_ENCODINGS:
        raise ValidationError(
            f"mqtt_encoding must be one of {', '.join(MQTT_ENCODINGS)}, got {encoding!r}"
        )

    if not getattr(ns, "mqtt_topic", None):
        raise ConfigError("Missing required setting: mqtt_topic")

    tls_version = getattr(ns, "mqtt_tls_version", None)
    if tls_version and tls_version not in ALLOWED_TLS:
        logging.warning(
            "Invalid mqtt_tls_version '%s' – clearing to use library default",
            tls_version,
        )
        setattr(ns, "mqtt_tls_version", None)

    verify = getattr(ns, "mqtt_verify_mode", None)
    if verify and verify not in ALLOWED_VERIFY:
        logging.warning(
            "Invalid mqtt_verify_mode '%s' – clearing to use library default", verify
        )
        setattr(ns, "mqtt_verify_mode", None)
