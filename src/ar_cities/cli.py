"""
Command-line interface for the AR city overlay.
"""

import sys
from pathlib import Path
from typing import Optional
import dataclasses
import logging

import click

from .catalog import CatalogError, load_cities
from .config import Config
from .geo import KM_TO_MI, wrap180
from .layout import build_candidates
from .models import LatLon
from .projection import edge_side, is_within_fov


# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def _load_config(config: Optional[Path]) -> Config:
    return Config.from_yaml(config) if config else Config()


@click.group()
@click.version_option(version="0.1.0")
def main():
    """AR Cities - label cities on a live camera view at their true bearing."""
    pass


@main.command()
@click.option(
    "-c", "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration YAML file"
)
@click.option("--lat", type=float, help="Observer latitude (degrees North)")
@click.option("--lon", type=float, help="Observer longitude (degrees East, negative for West)")
@click.option(
    "--cities",
    type=click.Path(exists=True, path_type=Path),
    help="City catalog JSON (default: bundled sample)"
)
@click.option("--camera", type=int, help="Camera index")
@click.option("--hfov", type=float, help="Horizontal FOV (degrees)")
@click.option("--port", type=str, help="Flight controller serial port, or 'auto'")
@click.option("--fullscreen", is_flag=True, help="Start in fullscreen mode")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
def run(
    config: Optional[Path],
    lat: Optional[float],
    lon: Optional[float],
    cities: Optional[Path],
    camera: Optional[int],
    hfov: Optional[float],
    port: Optional[str],
    fullscreen: bool,
    verbose: bool,
):
    """
    Open the camera and overlay city labels.
    """
    from .app import CityAR

    cfg = _load_config(config)

    # Apply command-line overrides
    if lat is not None or lon is not None:
        cfg.observer = LatLon(
            lat if lat is not None else cfg.observer.lat,
            lon if lon is not None else cfg.observer.lon,
        )
    if cities is not None:
        cfg.cities_path = cities
    if camera is not None:
        cfg.camera.index = camera
    if hfov is not None:
        cfg.settings = dataclasses.replace(cfg.settings, hfov_deg=hfov)
    if port is not None:
        cfg.hardware.mavlink_port = port
    if fullscreen:
        cfg.display.fullscreen = True

    if verbose or cfg.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        app = CityAR(cfg)
        app.setup_cities()
    except CatalogError as e:
        click.echo(click.style(f"✗ {e}", fg="red"))
        sys.exit(1)

    app.run()


@main.command()
@click.option("--lat", type=float, required=True, help="Observer latitude")
@click.option("--lon", type=float, required=True, help="Observer longitude")
@click.option("--heading", type=float, default=0.0, help="Camera heading (degrees)")
@click.option("--hfov", type=float, default=None, help="Horizontal FOV (degrees)")
@click.option("--max-distance", type=float, default=None, help="Maximum distance (km)")
@click.option("--units", type=click.Choice(["km", "mi"]), default=None, help="Display units")
@click.option(
    "--cities",
    type=click.Path(exists=True, path_type=Path),
    help="City catalog JSON (default: bundled sample)"
)
@click.option(
    "-c", "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration YAML file"
)
def nearby(
    lat: float,
    lon: float,
    heading: float,
    hfov: Optional[float],
    max_distance: Optional[float],
    units: Optional[str],
    cities: Optional[Path],
    config: Optional[Path],
):
    """
    List cities in range with their bearing, largest first.

    Useful for checking a location and heading without a camera.
    """
    cfg = _load_config(config)
    settings = cfg.settings
    hfov = settings.hfov_deg if hfov is None else hfov
    max_distance = settings.max_distance_km if max_distance is None else max_distance
    units = units or settings.units

    try:
        catalog = load_cities(cities or cfg.cities_path)
    except CatalogError as e:
        click.echo(click.style(f"✗ {e}", fg="red"))
        sys.exit(1)

    candidates = build_candidates(catalog, LatLon(lat, lon), max_distance)
    candidates.sort(key=lambda c: c.city.population, reverse=True)

    click.echo(f"Observer: {lat:.4f}, {lon:.4f}  heading {heading:.1f}°  HFOV {hfov:.0f}°")
    click.echo(f"{len(candidates)} of {len(catalog)} cities within {max_distance:.0f} km")
    click.echo()

    for cand in candidates:
        delta = wrap180(cand.bearing_deg - heading)
        if is_within_fov(delta, hfov):
            where = click.style("in view", fg="green")
        else:
            where = f"off-screen {edge_side(delta)}"
        dist = cand.distance_km if units == "km" else cand.distance_km * KM_TO_MI
        click.echo(f"  {cand.city.name}, {cand.city.country}: {dist:.1f} {units}, "
                   f"bearing {cand.bearing_deg:.1f}° ({delta:+.1f}°), "
                   f"pop {cand.city.population:,} - {where}")


@main.command()
def ports():
    """
    List serial ports that may host a flight controller.
    """
    from .hardware import find_serial_ports

    found = find_serial_ports()
    if not found:
        click.echo("No serial ports found")
        return
    for port in found:
        marker = click.style(" (likely autopilot)", fg="green") if port["likely_autopilot"] else ""
        click.echo(f"  {port['device']}: {port['description']}{marker}")


@main.command()
@click.argument("output_path", type=click.Path(path_type=Path))
def init_config(output_path: Path):
    """
    Create a default configuration file.
    """
    cfg = Config()
    cfg.to_yaml(output_path)
    click.echo(f"Created configuration file: {output_path}")


if __name__ == "__main__":
    main()
