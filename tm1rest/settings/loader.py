"""YAML loader for named TM1 connection configurations."""

from pathlib import Path

import structlog
import yaml
from pydantic import ValidationError

from tm1rest.errors import ConnectionConfigError
from tm1rest.transport.config import ConnectionConfig


logger = structlog.get_logger()

INSTANCES_KEY = "instances"


def _flatten_errors(instance: str, error: ValidationError) -> list[dict[str, str]]:
    return [
        {
            "loc": ".".join([instance, *(str(loc) for loc in err["loc"])]),
            "msg": err["msg"],
            "type": err["type"],
        }
        for err in error.errors()
    ]


def load_connection_configs(path: Path | str) -> dict[str, ConnectionConfig]:
    """Load every instance defined in a connections file.

    The file maps instance names to ConnectionConfig fields::

        instances:
          production:
            address: tm1.example.com
            port: 8010
            ssl: true
            credentials:
              user: admin
              password: secret

    Args:
        path: Path to the YAML file.

    Returns:
        Mapping of instance name to validated ConnectionConfig.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConnectionConfigError: If the YAML is malformed or any instance
            fails validation. All instance errors are reported together.
    """
    file_path = Path(path)
    log = logger.bind(component="config", file_path=str(file_path))
    log.info("loading_config_file")

    try:
        parsed = yaml.safe_load(file_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        parse_errors = [{"loc": "", "msg": str(e), "type": "yaml_error"}]
        log.error("config_parse_failed", errors=parse_errors)
        raise ConnectionConfigError(parse_errors, str(file_path)) from e

    instances = parsed.get(INSTANCES_KEY) if isinstance(parsed, dict) else None
    if not isinstance(instances, dict):
        shape_errors = [
            {
                "loc": INSTANCES_KEY,
                "msg": "Expected a mapping of instance names",
                "type": "mapping_type",
            }
        ]
        log.error("config_validation_failed", errors=shape_errors)
        raise ConnectionConfigError(shape_errors, str(file_path))

    configs: dict[str, ConnectionConfig] = {}
    errors: list[dict[str, str]] = []
    for name, data in instances.items():
        try:
            configs[str(name)] = ConnectionConfig.model_validate(data or {})
        except ValidationError as e:
            errors.extend(_flatten_errors(str(name), e))

    if errors:
        log.error(
            "config_validation_failed",
            validation_error_count=len(errors),
            errors=errors,
        )
        raise ConnectionConfigError(errors, str(file_path))

    log.info("config_file_loaded", instance_count=len(configs))
    return configs
