"""
YAML configuration for the command line tool.

The file is optional. It holds ``probe`` defaults and the ``output`` format;
command line options override whatever it sets. Unknown keys are ignored,
values of the wrong type raise ConfigError.
"""

import copy
import logging
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError
from .probe import ProbeConfig, split_groups

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ('text', 'json', 'pem')

DEFAULTS: Dict[str, Dict[str, Any]] = {
    'probe': {
        'timeout': 10.0,
        'groups': (),
        'pqc_only': False,
        'verify': True,
        'ca_file': None,
        'openssl': 'openssl',
        'workers': 8,
    },
    'output': {
        'format': 'text',
    },
}


def load_config(config_file: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
    """Load configuration from YAML file, merged over the defaults"""
    if config_file is None:
        return copy.deepcopy(DEFAULTS)
    try:
        with open(config_file, 'r') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"cannot read config file {config_file}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {config_file}: {e}")

    logger.debug("Loaded configuration from %s", config_file)
    return validate_config(data or {}, config_file)


def validate_config(data: Any, source: str = 'config') -> Dict[str, Dict[str, Any]]:
    if not isinstance(data, dict):
        raise ConfigError(f"{source}: top level must be a mapping")

    config = copy.deepcopy(DEFAULTS)
    probe = _section(data, 'probe', source)
    output = _section(data, 'output', source)

    if 'timeout' in probe:
        timeout = probe['timeout']
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ConfigError(f"{source}: probe.timeout must be a positive number")
        config['probe']['timeout'] = float(timeout)

    if 'groups' in probe:
        groups = probe['groups']
        if isinstance(groups, str):
            groups = split_groups(groups)
        elif isinstance(groups, list) and all(isinstance(g, str) for g in groups):
            groups = tuple(groups)
        elif groups is None:
            groups = ()
        else:
            raise ConfigError(f"{source}: probe.groups must be a list of group names")
        config['probe']['groups'] = groups

    for key in ('pqc_only', 'verify'):
        if key in probe:
            if not isinstance(probe[key], bool):
                raise ConfigError(f"{source}: probe.{key} must be true or false")
            config['probe'][key] = probe[key]

    for key in ('ca_file', 'openssl'):
        if key in probe:
            if probe[key] is not None and not isinstance(probe[key], str):
                raise ConfigError(f"{source}: probe.{key} must be a string")
            config['probe'][key] = probe[key]

    if 'workers' in probe:
        workers = probe['workers']
        if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
            raise ConfigError(f"{source}: probe.workers must be a positive integer")
        config['probe']['workers'] = workers

    if 'format' in output:
        if output['format'] not in OUTPUT_FORMATS:
            raise ConfigError(f"{source}: output.format must be one of {', '.join(OUTPUT_FORMATS)}")
        config['output']['format'] = output['format']

    return config


def _section(data: Dict[str, Any], name: str, source: str) -> Dict[str, Any]:
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"{source}: '{name}' must be a mapping")
    return section


def probe_config(config: Dict[str, Dict[str, Any]], **overrides) -> ProbeConfig:
    """Build a ProbeConfig from loaded settings; non-None overrides win"""
    values = dict(config.get('probe', {}))
    values.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return ProbeConfig.from_mapping(values)
    except ValueError as e:
        raise ConfigError(str(e))
