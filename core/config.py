"""Market configuration: frozen parameter sets and a YAML loader."""

import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path

import yaml

import constants as c

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class FeeSchedule:
    start_fee_bps: int = c.START_FEE_BPS
    end_fee_bps: int = c.END_FEE_BPS
    decay_target: int = c.FEE_DECAY_TARGET


@dataclass(frozen=True)
class RateModel:
    """Kinked utilization curve. All rates are annual and WAD scaled."""

    base_rate: int = c.BASE_RATE
    slope: int = c.RATE_SLOPE
    kink: int = c.KINK
    steep_multiplier: int = c.STEEP_MULTIPLIER
    reserve_factor: int = c.RESERVE_FACTOR


@dataclass(frozen=True)
class MarketConfig:
    fees: FeeSchedule = field(default_factory=FeeSchedule)
    rates: RateModel = field(default_factory=RateModel)
    fee_capture_bps: int = c.FEE_CAPTURE_BPS
    liq_bounty_bps: int = c.LIQ_BOUNTY_BPS
    grace_period: int = c.GRACE_PERIOD

    def validate(self):
        f = self.fees
        if not 0 <= f.end_fee_bps <= f.start_fee_bps < c.BASIS_POINTS:
            raise ConfigError(f"Fee schedule must satisfy 0 <= end <= start < {c.BASIS_POINTS}: {f}")
        if f.decay_target <= 0:
            raise ConfigError("Fee decay target must be positive")

        r = self.rates
        if not 0 < r.kink < c.WAD:
            raise ConfigError("Kink must lie strictly between 0 and 1 (WAD)")
        if r.base_rate < 0 or r.slope < 0:
            raise ConfigError("Rates cannot be negative")
        if r.steep_multiplier < 1:
            raise ConfigError("Steep multiplier must be at least 1")
        if not 0 <= r.reserve_factor <= c.WAD:
            raise ConfigError("Reserve factor must lie in [0, 1] (WAD)")

        if not 0 <= self.fee_capture_bps < c.BASIS_POINTS:
            raise ConfigError("Fee capture share must lie in [0, 10000) bps")
        if not 0 <= self.liq_bounty_bps < c.BASIS_POINTS:
            raise ConfigError("Recovery bounty must lie in [0, 10000) bps")
        if self.grace_period < 0:
            raise ConfigError("Grace period cannot be negative")
        return self


DEFAULT_CONFIG = MarketConfig()


@dataclass(frozen=True)
class _TopLevel:
    fee_capture_bps: int = c.FEE_CAPTURE_BPS
    liq_bounty_bps: int = c.LIQ_BOUNTY_BPS
    grace_period: int = c.GRACE_PERIOD


def _section(cls, raw, name):
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        raise ConfigError(f"Unknown keys in '{name}': {sorted(unknown)}")
    try:
        return cls(**{k: int(v) for k, v in raw.items()})
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value in '{name}': {exc}") from exc


def config_from_dict(raw):
    """Build a validated MarketConfig from a plain mapping."""
    raw = dict(raw or {})
    fees = _section(FeeSchedule, raw.pop("fees", None), "fees")
    rates = _section(RateModel, raw.pop("rates", None), "rates")
    top = _section(_TopLevel, raw, "market")
    return replace(DEFAULT_CONFIG, fees=fees, rates=rates, **vars(top)).validate()


def load_market_config(path):
    """Read a YAML market configuration file."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    with path.open() as fh:
        try:
            raw = yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Malformed YAML in {path}: {exc}") from exc
    if raw is not None and not isinstance(raw, dict):
        raise ConfigError(f"Top level of {path} must be a mapping")
    config = config_from_dict(raw)
    logger.info("Loaded market config from %s", path)
    return config
