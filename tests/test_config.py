import pytest

from certsift.config import DEFAULTS, load_config, probe_config, validate_config
from certsift.errors import ConfigError


def write(tmp_path, text):
    path = tmp_path / 'config.yaml'
    path.write_text(text)
    return str(path)


def test_defaults_without_file():
    config = load_config(None)
    assert config == DEFAULTS
    assert config is not DEFAULTS


def test_load_overrides_defaults(tmp_path):
    path = write(tmp_path, """
probe:
  timeout: 4
  groups: X25519MLKEM768:X25519
  verify: false
  workers: 2
  unknown_key: ignored
output:
  format: json
extra: ignored
""")
    config = load_config(path)

    assert config['probe']['timeout'] == 4.0
    assert config['probe']['groups'] == ('X25519MLKEM768', 'X25519')
    assert config['probe']['verify'] is False
    assert config['probe']['workers'] == 2
    assert config['probe']['openssl'] == 'openssl'
    assert config['output']['format'] == 'json'


def test_groups_as_list(tmp_path):
    config = load_config(write(tmp_path, "probe:\n  groups:\n    - X25519MLKEM768\n    - SecP256r1MLKEM768\n"))
    assert config['probe']['groups'] == ('X25519MLKEM768', 'SecP256r1MLKEM768')


def test_empty_file_gives_defaults(tmp_path):
    assert load_config(write(tmp_path, '')) == DEFAULTS


@pytest.mark.parametrize('data', [
    ['not', 'a', 'mapping'],
    {'probe': 'fast'},
    {'probe': {'timeout': 'soon'}},
    {'probe': {'timeout': -1}},
    {'probe': {'timeout': True}},
    {'probe': {'groups': 42}},
    {'probe': {'pqc_only': 'yes'}},
    {'probe': {'workers': 0}},
    {'probe': {'ca_file': 12}},
    {'output': {'format': 'xml'}},
])
def test_invalid_values(data):
    with pytest.raises(ConfigError):
        validate_config(data)


def test_invalid_yaml(tmp_path):
    with pytest.raises(ConfigError):
        load_config(write(tmp_path, "probe: [unclosed\n"))


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / 'missing.yaml'))


def test_probe_config_overrides():
    config = load_config(None)
    settings = probe_config(config, timeout=2.5, groups=None, servername='sni.example.com')
    assert settings.timeout == 2.5
    assert settings.servername == 'sni.example.com'
    assert settings.groups == ()
    assert settings.verify is True


def test_probe_config_rejects_classical_groups_under_pqc_only():
    config = validate_config({'probe': {'groups': ['X25519']}})
    with pytest.raises(ConfigError):
        probe_config(config, pqc_only=True)
