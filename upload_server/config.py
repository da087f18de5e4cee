"""Configuration settings for the upload server."""
import argparse
import json
import logging
import secrets
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

from upload_server.services.file_naming import resolve_naming_strategy

# Defaults
DEFAULT_ADDR = "127.0.0.1:8080"
DEFAULT_DOCUMENT_ROOT = "."
DEFAULT_MAX_UPLOAD_SIZE = 1024 * 1024  # 1MB
DEFAULT_NAMING_STRATEGY = "uuid"
DEFAULT_SHUTDOWN_TIMEOUT = 15000  # milliseconds

TRUTHY_FLAG_VALUES = ("1", "t", "true", "yes")
FALSY_FLAG_VALUES = ("0", "f", "false", "no")


def split_address(addr: str) -> Tuple[str, int]:
    """Split ``host:port`` into host and port. An empty host listens on all interfaces."""
    host, sep, port = addr.rpartition(":")
    if not sep or not port.isdigit() or not 0 <= int(port) <= 65535:
        raise ValueError(f"invalid listen address: {addr}")
    host = host.strip("[]") or "0.0.0.0"
    return host, int(port)


class ServerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    addr: str = DEFAULT_ADDR
    document_root: str = DEFAULT_DOCUMENT_ROOT
    enable_cors: bool = True
    max_upload_size: int = DEFAULT_MAX_UPLOAD_SIZE
    file_naming_strategy: str = DEFAULT_NAMING_STRATEGY
    shutdown_timeout: int = DEFAULT_SHUTDOWN_TIMEOUT
    enable_auth: bool = False
    read_only_tokens: Tuple[str, ...] = ()
    read_write_tokens: Tuple[str, ...] = ()
    log_file: Optional[str] = None

    @field_validator('addr')
    @classmethod
    def validate_addr(cls, v):
        split_address(v)
        return v

    @field_validator('max_upload_size')
    @classmethod
    def validate_max_upload_size(cls, v):
        if v <= 0:
            raise ValueError('max_upload_size must be positive')
        return v

    @field_validator('shutdown_timeout')
    @classmethod
    def validate_shutdown_timeout(cls, v):
        if v < 0:
            raise ValueError('shutdown_timeout must not be negative')
        return v

    @field_validator('file_naming_strategy')
    @classmethod
    def validate_file_naming_strategy(cls, v):
        # Raises ValueError for unknown names
        resolve_naming_strategy(v)
        return v

    @field_validator('read_only_tokens', 'read_write_tokens')
    @classmethod
    def drop_empty_tokens(cls, v):
        return tuple(token for token in v if token)

    def listen_address(self) -> Tuple[str, int]:
        return split_address(self.addr)


def parse_bool_flag(value: str) -> bool:
    lowered = value.lower()
    if lowered in TRUTHY_FLAG_VALUES:
        return True
    if lowered in FALSY_FLAG_VALUES:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value: {value}")


def parse_token_list(value: str) -> List[str]:
    return value.split(",")


def build_arg_parser(prog: Optional[str] = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog, description="Simple HTTP upload server")
    parser.add_argument("--config", help="path to config file")
    parser.add_argument("--document_root", help="path to document root directory")
    parser.add_argument("--addr", help="address to listen")
    parser.add_argument("--enable_cors", type=parse_bool_flag, nargs="?", const=True,
                        help="enable CORS header")
    parser.add_argument("--max_upload_size", type=int, help="max upload size in bytes")
    parser.add_argument("--file_naming_strategy", help="file naming strategy (uuid, sha256)")
    parser.add_argument("--shutdown_timeout", type=int,
                        help="graceful shutdown timeout in milliseconds")
    parser.add_argument("--enable_auth", type=parse_bool_flag, nargs="?", const=True,
                        help="enable authentication")
    parser.add_argument("--read_only_tokens", type=parse_token_list,
                        help="comma separated list of read only tokens")
    parser.add_argument("--read_write_tokens", type=parse_token_list,
                        help="comma separated list of read write tokens")
    parser.add_argument("--log_file", help="also write detailed logs to this file")
    return parser


def load_config_file(path: str) -> dict:
    with open(path, "r") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"config file {path} must contain a JSON object")
    return data


def load_config(args: Sequence[str], logger: Optional[logging.Logger] = None) -> ServerConfig:
    """Build a ServerConfig from defaults, an optional JSON file and command line flags.

    Flags take precedence over the config file, which takes precedence over
    the defaults. A flag that is not given leaves the lower layers untouched.
    """
    logger = logger or logging.getLogger(__name__)
    namespace = build_arg_parser().parse_args(list(args))

    values = {}
    if namespace.config:
        file_values = load_config_file(namespace.config)
        logger.info(f"Loaded config from {namespace.config}")
        values.update(file_values)
    else:
        logger.info("No config file provided")

    flag_values = {
        key: value for key, value in vars(namespace).items()
        if key != "config" and value is not None
    }
    values.update(flag_values)

    return ServerConfig(**values)


def ensure_tokens(config: ServerConfig, logger: logging.Logger) -> ServerConfig:
    """Generate one token of each kind when auth is on but no token is configured."""
    if not config.enable_auth or config.read_only_tokens or config.read_write_tokens:
        return config

    logger.warning("Authentication is enabled but no tokens provided. Generating random tokens")
    read_only_token = secrets.token_hex(32)
    read_write_token = secrets.token_hex(32)
    logger.warning(f"Generated read only token: {read_only_token}")
    logger.warning(f"Generated read write token: {read_write_token}")
    return config.model_copy(update={
        "read_only_tokens": (read_only_token,),
        "read_write_tokens": (read_write_token,),
    })
