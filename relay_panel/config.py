"""Configuration loader for relay-panel."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import constants


@dataclass(slots=True)
class BrokerConfig:
    host: str = constants.DEFAULT_BROKER_HOST
    port: int = constants.DEFAULT_BROKER_PORT
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = False
    ca_certs: Optional[str] = None
    keepalive: int = 60
    qos: int = 0
    client_id_prefix: str = constants.DEFAULT_CLIENT_ID_PREFIX
    connect_timeout_seconds: float = 10.0


@dataclass(slots=True)
class DeviceConfig:
    device_id: str = constants.DEFAULT_DEVICE_ID
    control_topic: str = constants.CONTROL_TOPIC_TEMPLATE.format(
        device_id=constants.DEFAULT_DEVICE_ID
    )


@dataclass(slots=True)
class PolicyConfig:
    threshold: int = constants.DEFAULT_THRESHOLD
    edge_triggered: bool = False
    strict_timer: bool = False


@dataclass(slots=True)
class BatteryConfig:
    source: str = "none"  # "none" or "psutil"
    poll_interval_seconds: float = 60.0


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class ResilienceConfig:
    connect_attempts: int = 3
    reconnect_attempts: int = 10
    reconnect_initial_seconds: float = 1.0
    reconnect_max_seconds: float = 30.0
    health_enabled: bool = False
    health_host: str = "127.0.0.1"
    health_port: int = 0


@dataclass(slots=True)
class PanelConfig:
    broker: BrokerConfig
    device: DeviceConfig
    policy: PolicyConfig
    battery: BatteryConfig
    logging: LoggingConfig
    resilience: ResilienceConfig
    raw: ConfigParser
    path: Path

    @property
    def control_topic(self) -> str:
        return self.device.control_topic


def split_broker_address(value: str, default_port: int) -> tuple[str, int]:
    """Split ``host[:port]`` (optionally prefixed with ``tcp://``) into parts."""

    address = value.strip()
    for scheme in ("tcp://", "mqtt://", "ssl://", "mqtts://"):
        if address.startswith(scheme):
            address = address[len(scheme) :]
            break

    if ":" in address:
        host_part, port_part = address.rsplit(":", 1)
        try:
            return host_part, int(port_part)
        except ValueError:
            pass
    return address, default_port


def load_config(path: Optional[Path] = None) -> PanelConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "broker": {
                "host": constants.DEFAULT_BROKER_HOST,
                "port": str(constants.DEFAULT_BROKER_PORT),
                "use_tls": "false",
                "keepalive": "60",
                "qos": "0",
                "client_id_prefix": constants.DEFAULT_CLIENT_ID_PREFIX,
                "connect_timeout_seconds": "10.0",
            },
            "device": {
                "device_id": constants.DEFAULT_DEVICE_ID,
            },
            "policy": {
                "threshold": str(constants.DEFAULT_THRESHOLD),
                "edge_triggered": "false",
                "strict_timer": "false",
            },
            "battery": {
                "source": "none",
                "poll_interval_seconds": "60",
            },
            "logging": {
                "level": "INFO",
                "log_network": "false",
            },
            "resilience": {
                "connect_attempts": "3",
                "reconnect_attempts": "10",
                "reconnect_initial_seconds": "1.0",
                "reconnect_max_seconds": "30.0",
                "health_enabled": "false",
                "health_host": "127.0.0.1",
                "health_port": "0",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    default_port = parser.getint(
        "broker", "port", fallback=constants.DEFAULT_BROKER_PORT
    )
    broker_host, broker_port = split_broker_address(
        parser.get("broker", "host"), default_port
    )
    if broker_host != parser.get("broker", "host"):
        parser.set("broker", "host", broker_host)
        parser.set("broker", "port", str(broker_port))

    broker = BrokerConfig(
        host=broker_host,
        port=broker_port,
        username=parser.get("broker", "username", fallback=None),
        password=parser.get("broker", "password", fallback=None),
        use_tls=parser.getboolean("broker", "use_tls", fallback=False),
        ca_certs=parser.get("broker", "ca_certs", fallback=None),
        keepalive=max(5, parser.getint("broker", "keepalive", fallback=60)),
        qos=max(0, min(2, parser.getint("broker", "qos", fallback=0))),
        client_id_prefix=parser.get(
            "broker", "client_id_prefix", fallback=constants.DEFAULT_CLIENT_ID_PREFIX
        ),
        connect_timeout_seconds=max(
            0.1,
            parser.getfloat("broker", "connect_timeout_seconds", fallback=10.0),
        ),
    )

    device_id = parser.get("device", "device_id", fallback=constants.DEFAULT_DEVICE_ID)
    device = DeviceConfig(
        device_id=device_id,
        control_topic=parser.get(
            "device",
            "control_topic",
            fallback=constants.CONTROL_TOPIC_TEMPLATE.format(device_id=device_id),
        ),
    )

    try:
        threshold_value = parser.getint(
            "policy", "threshold", fallback=constants.DEFAULT_THRESHOLD
        )
    except ValueError:
        threshold_value = constants.DEFAULT_THRESHOLD
    if not constants.THRESHOLD_MIN <= threshold_value <= constants.THRESHOLD_MAX:
        threshold_value = constants.DEFAULT_THRESHOLD

    policy = PolicyConfig(
        threshold=threshold_value,
        edge_triggered=parser.getboolean("policy", "edge_triggered", fallback=False),
        strict_timer=parser.getboolean("policy", "strict_timer", fallback=False),
    )

    battery = BatteryConfig(
        source=parser.get("battery", "source", fallback="none").strip().lower(),
        poll_interval_seconds=max(
            1.0,
            parser.getfloat("battery", "poll_interval_seconds", fallback=60.0),
        ),
    )

    log_path_value = parser.get("logging", "path", fallback=None)
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    resilience = ResilienceConfig(
        connect_attempts=max(
            1, parser.getint("resilience", "connect_attempts", fallback=3)
        ),
        reconnect_attempts=max(
            0, parser.getint("resilience", "reconnect_attempts", fallback=10)
        ),
        reconnect_initial_seconds=max(
            0.0,
            parser.getfloat("resilience", "reconnect_initial_seconds", fallback=1.0),
        ),
        reconnect_max_seconds=max(
            0.0,
            parser.getfloat("resilience", "reconnect_max_seconds", fallback=30.0),
        ),
        health_enabled=parser.getboolean(
            "resilience", "health_enabled", fallback=False
        ),
        health_host=parser.get("resilience", "health_host", fallback="127.0.0.1"),
        health_port=parser.getint("resilience", "health_port", fallback=0),
    )

    return PanelConfig(
        broker=broker,
        device=device,
        policy=policy,
        battery=battery,
        logging=logging_config,
        resilience=resilience,
        raw=parser,
        path=config_path,
    )


def save_config(config: PanelConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
