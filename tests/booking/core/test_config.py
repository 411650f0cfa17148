import pytest

from booking.core import config


def test_validate_runtime_config_allows_development_defaults(monkeypatch) -> None:
    monkeypatch.setattr(config, 'APP_ENV', 'development')
    monkeypatch.setattr(config, 'JWT_SECRET_KEY', 'change-me')
    monkeypatch.setattr(config, 'JWT_JWKS_URL', None)

    config.validate_runtime_config()


def test_validate_runtime_config_rejects_default_secret_in_production(monkeypatch) -> None:
    monkeypatch.setattr(config, 'APP_ENV', 'production')
    monkeypatch.setattr(config, 'JWT_SECRET_KEY', 'change-me')
    monkeypatch.setattr(config, 'JWT_JWKS_URL', None)

    with pytest.raises(RuntimeError, match='must be set in production'):
        config.validate_runtime_config()


def test_validate_runtime_config_accepts_provider_keys_in_production(monkeypatch) -> None:
    monkeypatch.setattr(config, 'APP_ENV', 'production')
    monkeypatch.setattr(config, 'JWT_SECRET_KEY', 'change-me')
    monkeypatch.setattr(config, 'JWT_JWKS_URL', 'https://login.example.com/.well-known/jwks.json')
    monkeypatch.setattr(config, 'JWT_ALGORITHM', 'RS256')

    config.validate_runtime_config()


@pytest.mark.parametrize('algorithm', ['HS256', 'hs512'])
def test_validate_runtime_config_rejects_jwks_with_shared_secret_algorithm(monkeypatch, algorithm: str) -> None:
    monkeypatch.setattr(config, 'APP_ENV', 'development')
    monkeypatch.setattr(config, 'JWT_JWKS_URL', 'https://login.example.com/.well-known/jwks.json')
    monkeypatch.setattr(config, 'JWT_ALGORITHM', algorithm)

    with pytest.raises(RuntimeError, match='asymmetric'):
        config.validate_runtime_config()


def test_validate_runtime_config_rejects_non_positive_rate_limit(monkeypatch) -> None:
    monkeypatch.setattr(config, 'APP_ENV', 'development')
    monkeypatch.setattr(config, 'JWT_JWKS_URL', None)
    monkeypatch.setattr(config, 'RATE_LIMIT_REQUESTS', 0)

    with pytest.raises(RuntimeError, match='must be positive'):
        config.validate_runtime_config()
