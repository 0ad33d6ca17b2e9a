"""
roughlib command-line interface.

Provides commands to train a roughness model, score reaches with a saved
model, and run both end to end.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import click

from roughlib.core import RoughlibError


def _load_config(config_path: Optional[str], output_dir: Optional[str], sequential: bool):
    from roughlib.config import PipelineConfig

    config = PipelineConfig.load(config_path) if config_path else PipelineConfig()
    if output_dir:
        config.output_dir = Path(output_dir)
    if sequential:
        config.parallel = False
    return config


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """roughlib - Manning's n estimation and rating-curve validation."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument("targets", type=click.Path(exists=True, dir_okay=False))
@click.argument("attributes", type=click.Path(exists=True, dir_okay=False))
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--output-dir", type=click.Path(file_okay=False))
@click.option("--sequential", is_flag=True, help="Disable worker pools.")
def train(
    targets: str,
    attributes: str,
    config_path: Optional[str],
    output_dir: Optional[str],
    sequential: bool,
) -> None:
    """Fit a roughness model from TARGETS and ATTRIBUTES CSV files."""
    from roughlib.io import read_attributes, read_targets
    from roughlib.pipeline import train_model

    try:
        config = _load_config(config_path, output_dir, sequential)
        result = train_model(
            read_targets(targets, config.target), read_attributes(attributes), config
        )
    except RoughlibError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(result.partition.summary())
    click.echo(result.model.summary())
    if config.persist:
        click.echo(f"Model saved to: {config.model_path}")


@cli.command()
@click.argument("model_path", type=click.Path(exists=True, dir_okay=False))
@click.argument("attributes", type=click.Path(exists=True, dir_okay=False))
@click.argument("rating_curves", type=click.Path(exists=True, dir_okay=False))
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--output-dir", type=click.Path(file_okay=False))
@click.option("--sequential", is_flag=True, help="Disable worker pools.")
@click.option("--format", "fmt", type=click.Choice(["text", "json"]), default="text")
def score(
    model_path: str,
    attributes: str,
    rating_curves: str,
    config_path: Optional[str],
    output_dir: Optional[str],
    sequential: bool,
    fmt: str,
) -> None:
    """Score ATTRIBUTES with a saved model against RATING_CURVES."""
    from roughlib.io import read_attributes, read_rating_curves
    from roughlib.pipeline import validate_model
    from roughlib.regressor import FittedModel
    from roughlib.validation import generate_json_report, generate_text_report

    try:
        config = _load_config(config_path, output_dir, sequential)
        model = FittedModel.load(model_path)
        config.model_name = model.name
        results = validate_model(
            model, read_attributes(attributes), read_rating_curves(rating_curves), config
        )
    except RoughlibError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if fmt == "json":
        click.echo(generate_json_report(results))
    else:
        click.echo(generate_text_report(results))


@cli.command()
@click.argument("targets", type=click.Path(exists=True, dir_okay=False))
@click.argument("attributes", type=click.Path(exists=True, dir_okay=False))
@click.argument("rating_curves", type=click.Path(exists=True, dir_okay=False))
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--output-dir", type=click.Path(file_okay=False))
@click.option("--sequential", is_flag=True, help="Disable worker pools.")
@click.option("--all-reaches", is_flag=True, help="Score every reach, not only held-out ones.")
def run(
    targets: str,
    attributes: str,
    rating_curves: str,
    config_path: Optional[str],
    output_dir: Optional[str],
    sequential: bool,
    all_reaches: bool,
) -> None:
    """Train on TARGETS/ATTRIBUTES and validate against RATING_CURVES."""
    from roughlib.io import read_attributes, read_rating_curves, read_targets
    from roughlib.pipeline import run_pipeline
    from roughlib.validation import generate_text_report

    try:
        config = _load_config(config_path, output_dir, sequential)
        result = run_pipeline(
            read_targets(targets, config.target),
            read_attributes(attributes),
            read_rating_curves(rating_curves),
            config,
            score="all" if all_reaches else "validation",
        )
    except RoughlibError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(result.model.summary())
    click.echo("")
    click.echo(generate_text_report(result.validation))


if __name__ == "__main__":
    cli()
