import typer
from pathlib import Path
import yaml
from importlib.resources import files

app = typer.Typer(help="ContrastFlux: multi-contrast differential abundance testing")


@app.command()
def init(path: Path = Path("contrastflux_config.yaml")):
    """
    Generate a config scaffold (basic template) at given path.
    """
    default_yaml = files("contrastflux.templates").joinpath("user_template.yaml").read_text()

    path.write_text(default_yaml)
    typer.echo(f"Template written to {path}")


@app.command()
def run(
    config: Path = typer.Option(..., help="Path to YAML config file"),
):
    """
    Run the ContrastFlux pipeline from a YAML config.
    """
    from contrastflux.utils.cli_setup import configure_cli_display
    from contrastflux.main import run_pipeline

    configure_cli_display()
    config_data = yaml.safe_load(config.read_text())

    results = run_pipeline(config=config_data)
    if results.failures:
        typer.echo(f"{len(results.failures)} contrast(s) failed: {', '.join(results.failures)}", err=True)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
