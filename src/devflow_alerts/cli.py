"""Command-line interface for evaluating rules and checking providers."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import yaml

from .bootstrap import build_system
from .config import Settings
from .exceptions import AlertingError
from .logging import get_logger, setup_logging
from .models import Alert, MetricData, NotificationTemplate
from .templating import TemplateRenderer


def _load_structured(path: str) -> Any:
    text = Path(path).read_text(encoding="utf-8")
    if path.endswith((".yaml", ".yml")):
        return yaml.safe_load(text)
    return json.loads(text)


def _as_list(data: Any, key: str) -> List[Dict[str, Any]]:
    if isinstance(data, dict) and key in data:
        data = data[key]
    if not isinstance(data, list):
        raise click.BadParameter(f"Expected a list of {key} (or a mapping with '{key}')")
    return data


@click.group()
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML settings file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Override the configured log level",
)
@click.pass_context
def main(ctx: click.Context, config_file: Optional[str], log_level: Optional[str]) -> None:
    """DevFlow alerting tools."""
    settings = Settings(_config_file=config_file)
    setup_logging(log_level or settings.log_level, settings.log_format)
    ctx.obj = settings


@main.command("evaluate")
@click.argument("rules_file", type=click.Path(exists=True, dir_okay=False))
@click.argument("metrics_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def evaluate(settings: Settings, rules_file: str, metrics_file: str) -> None:
    """Evaluate RULES_FILE (YAML/JSON) against METRICS_FILE and print new alerts."""
    logger = get_logger(__name__)
    rules = _as_list(_load_structured(rules_file), "rules")
    metrics = [MetricData.from_dict(m) for m in _as_list(_load_structured(metrics_file), "metrics")]

    async def run() -> List[Alert]:
        system = build_system(settings)
        for rule_data in rules:
            await system.alert_service.create_rule(rule_data)
        return await system.alert_service.evaluate_metrics(metrics)

    try:
        alerts = asyncio.run(run())
    except AlertingError as e:
        raise click.ClickException(str(e)) from e

    logger.info("Evaluation finished", rules=len(rules), metrics=len(metrics), alerts=len(alerts))
    click.echo(json.dumps([a.to_dict() for a in alerts], indent=2))


@main.command("render")
@click.argument("template_file", type=click.Path(exists=True, dir_okay=False))
@click.argument("alert_file", type=click.Path(exists=True, dir_okay=False))
def render(template_file: str, alert_file: str) -> None:
    """Render TEMPLATE_FILE against the alert in ALERT_FILE."""
    template = NotificationTemplate.from_dict(_load_structured(template_file))
    alert = Alert.from_dict(_load_structured(alert_file))
    message = TemplateRenderer().render(template, alert)
    click.echo(json.dumps({"subject": message.subject, "body": message.body}, indent=2))


@main.command("validate-providers")
@click.pass_obj
def validate_providers(settings: Settings) -> None:
    """Check every configured notification provider."""
    system = build_system(settings)
    results = asyncio.run(system.notification_service.validate_providers())
    click.echo(json.dumps({channel.value: ok for channel, ok in results.items()}, indent=2))
    if not all(results.values()):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
