"""Scoring configuration lifecycle.

- create: new draft with the next version number
- update: drafts only; activated configurations change via new_version_from
- activate: explicit transition; validates first, then in one transaction
  deactivates the family's current active configuration and deploys this one
- get_active_configuration: explicit lookup every time (no cached pointer)
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from scorecache.errors import ConfigurationInvalid, NotFound
from scorecache.models import ScoringConfiguration
from scorecache.services.families import get_family
from scorecache.services.scoring import Category, validate_rules
from scorecache.stores.postgres import utcnow

logger = logging.getLogger("uvicorn.error")

EDITABLE_FIELDS = (
    "name",
    "description",
    "category_weights",
    "normalization_method",
    "normalization_settings",
    "missing_data_strategies",
)

# Equal weights, no normalization
DEFAULT_PRESET: dict[str, Any] = {
    "name": "Default Balanced",
    "description": "Initial balanced configuration with equal weights",
    "category_weights": {c.value: 0.2 for c in Category},
    "normalization_method": "none",
    "normalization_settings": {},
    "missing_data_strategies": {
        "popular_opinion": "neutral",
        "industry_recognition": "exclude",
        "cultural_impact": "neutral",
        "people_quality": "average",
        "financial_performance": "exclude",
    },
}

# Emphasizes ratings with bayesian shrinkage, reduces the financial penalty
RECOMMENDED_PRESET: dict[str, Any] = {
    "name": "Optimized v2",
    "description": "Weights adjusted to reduce financial penalty and emphasize ratings",
    "category_weights": {
        "popular_opinion": 0.40,
        "industry_recognition": 0.15,
        "cultural_impact": 0.25,
        "people_quality": 0.15,
        "financial_performance": 0.05,
    },
    "normalization_method": "bayesian",
    "normalization_settings": {"prior_mean": 6.5, "min_votes": 500},
    "missing_data_strategies": dict(DEFAULT_PRESET["missing_data_strategies"]),
}


def validate_configuration(config: ScoringConfiguration) -> list[str]:
    """Validate a stored configuration without side effects."""
    errors = validate_rules(
        config.category_weights,
        config.normalization_method,
        config.normalization_settings,
        config.missing_data_strategies,
    )
    try:
        get_family(config.family)
    except NotFound as e:
        errors.append(str(e))
    return errors


async def _next_version(session: AsyncSession) -> int:
    result = await session.execute(select(func.max(ScoringConfiguration.version)))
    current = result.scalar()
    return (current or 0) + 1


async def create_configuration(
    session: AsyncSession,
    family: str,
    name: str,
    category_weights: dict[str, Any],
    normalization_method: str = "none",
    normalization_settings: dict[str, Any] | None = None,
    missing_data_strategies: dict[str, Any] | None = None,
    description: str | None = None,
) -> ScoringConfiguration:
    """Create a draft configuration with the next version number.

    Raises:
        ConfigurationInvalid: If the values fail validation.
        UnknownFamily: If the family is not registered.
    """
    get_family(family)
    errors = validate_rules(
        category_weights, normalization_method, normalization_settings, missing_data_strategies
    )
    if errors:
        raise ConfigurationInvalid(errors)

    config = ScoringConfiguration(
        version=await _next_version(session),
        family=family,
        name=name,
        description=description,
        category_weights=dict(category_weights),
        normalization_method=normalization_method,
        normalization_settings=dict(normalization_settings or {}),
        missing_data_strategies=dict(missing_data_strategies or {}),
        is_active=False,
        is_draft=True,
    )
    session.add(config)
    await session.flush()
    logger.info(f"[configuration] created draft v{config.version} family={family} name={name!r}")
    return config


async def get_configuration(session: AsyncSession, configuration_id: int) -> ScoringConfiguration:
    """Get a configuration by id.

    Raises:
        NotFound: If it does not exist.
    """
    config = await session.get(ScoringConfiguration, configuration_id)
    if config is None:
        raise NotFound(f"Scoring configuration not found: {configuration_id}")
    return config


async def list_configurations(
    session: AsyncSession,
    family: str | None = None,
    include_drafts: bool = True,
) -> list[ScoringConfiguration]:
    """List configurations, newest version first."""
    query = select(ScoringConfiguration).order_by(ScoringConfiguration.version.desc())
    if family:
        query = query.where(ScoringConfiguration.family == family)
    if not include_drafts:
        query = query.where(ScoringConfiguration.is_draft.is_(False))
    result = await session.execute(query)
    return list(result.scalars().all())


async def get_active_configuration(session: AsyncSession, family: str) -> ScoringConfiguration | None:
    """Currently active configuration for a family, resolved from the database."""
    result = await session.execute(
        select(ScoringConfiguration)
        .where(ScoringConfiguration.family == family, ScoringConfiguration.is_active.is_(True))
        .order_by(ScoringConfiguration.deployed_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def update_configuration(
    session: AsyncSession,
    configuration_id: int,
    changes: dict[str, Any],
) -> ScoringConfiguration:
    """Edit a draft configuration.

    Raises:
        ConfigurationInvalid: If the configuration was ever activated, if an
            unknown field is given, or if the merged values fail validation.
    """
    config = await get_configuration(session, configuration_id)
    if config.is_locked:
        raise ConfigurationInvalid(
            [f"configuration v{config.version} has been activated; create a new version instead"]
        )
    unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
    if unknown:
        raise ConfigurationInvalid([f"fields cannot be edited: {', '.join(unknown)}"])

    merged = {f: changes.get(f, getattr(config, f)) for f in EDITABLE_FIELDS}
    errors = validate_rules(
        merged["category_weights"],
        merged["normalization_method"],
        merged["normalization_settings"],
        merged["missing_data_strategies"],
    )
    if errors:
        raise ConfigurationInvalid(errors)

    for name, value in changes.items():
        setattr(config, name, dict(value) if isinstance(value, dict) else value)
    await session.flush()
    return config


async def activate_configuration(
    session: AsyncSession,
    configuration_id: int,
    now: datetime | None = None,
) -> ScoringConfiguration:
    """Deploy a configuration as the family's single active configuration.

    Validation runs before any write; an invalid configuration leaves stored
    state untouched.

    Raises:
        ConfigurationInvalid: If validation fails.
        NotFound: If the configuration does not exist.
    """
    config = await get_configuration(session, configuration_id)
    errors = validate_configuration(config)
    if errors:
        logger.warning(f"[configuration] activation rejected v{config.version}: {errors}")
        raise ConfigurationInvalid(errors)

    # Row locks serialize concurrent activations within the family
    await session.execute(
        select(ScoringConfiguration.id)
        .where(ScoringConfiguration.family == config.family)
        .with_for_update()
    )
    await session.execute(
        update(ScoringConfiguration)
        .where(
            ScoringConfiguration.family == config.family,
            ScoringConfiguration.is_active.is_(True),
            ScoringConfiguration.id != config.id,
        )
        .values(is_active=False)
        .execution_options(synchronize_session="fetch")
    )
    config.is_active = True
    config.is_draft = False
    config.deployed_at = now or utcnow()
    await session.flush()

    logger.info(f"[configuration] activated v{config.version} family={config.family}")
    return config


async def deactivate_configuration(session: AsyncSession, configuration_id: int) -> ScoringConfiguration:
    """Clear the active flag. The configuration stays locked."""
    config = await get_configuration(session, configuration_id)
    config.is_active = False
    await session.flush()
    logger.info(f"[configuration] deactivated v{config.version} family={config.family}")
    return config


async def new_version_from(
    session: AsyncSession,
    configuration_id: int,
    changes: dict[str, Any] | None = None,
) -> ScoringConfiguration:
    """Copy a configuration into a new draft version, applying changes."""
    source = await get_configuration(session, configuration_id)
    changes = dict(changes or {})
    unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
    if unknown:
        raise ConfigurationInvalid([f"fields cannot be edited: {', '.join(unknown)}"])

    merged = {f: changes.get(f, getattr(source, f)) for f in EDITABLE_FIELDS}
    return await create_configuration(
        session,
        family=source.family,
        name=merged["name"],
        description=merged["description"],
        category_weights=merged["category_weights"],
        normalization_method=merged["normalization_method"],
        normalization_settings=merged["normalization_settings"],
        missing_data_strategies=merged["missing_data_strategies"],
    )


async def seed_default_configuration(session: AsyncSession, family: str) -> ScoringConfiguration:
    """Create and activate the balanced default if the family has no active configuration."""
    existing = await get_active_configuration(session, family)
    if existing is not None:
        return existing
    config = await create_configuration(session, family=family, **DEFAULT_PRESET)
    return await activate_configuration(session, config.id)


async def resolve_configuration_id(
    session: AsyncSession,
    family: str,
    configuration_id: int | None,
) -> int:
    """Explicit configuration id, or the family's active one.

    Raises:
        NotFound: If no id is given and the family has no active configuration.
    """
    if configuration_id is not None:
        return configuration_id
    config = await get_active_configuration(session, family)
    if config is None:
        raise NotFound(f"No active configuration for family: {family}")
    return config.id
