"""Interactive collection of a TestConfig (used when no URL or config file is given)."""

from __future__ import annotations

from rich.console import Console
from rich.prompt import Confirm, FloatPrompt, IntPrompt, Prompt

from .config import build_test_config
from .models import TestConfig


def prompt_test_config(console: Console | None = None) -> TestConfig:
    """Ask for URL, VUs, duration, then the optional iterations, delay and ramp-up.

    A ramp-up produces two stages: ramp to the peak over the ramp duration,
    then move to the base VU count over the test duration.
    """
    console = console or Console()
    console.print("[bold magenta]Welcome to the nilgiri k6 performance testing tool![/bold magenta]")

    url = Prompt.ask("Enter the URL to test", console=console)
    vus = IntPrompt.ask("Enter the number of Virtual Users (VUs)", default=10, console=console)
    duration = Prompt.ask("Enter the test duration (e.g., 30s, 1m)", default="30s", console=console)

    raw: dict = {"url": url, "vus": vus, "duration": duration}

    if Confirm.ask("Do you want to specify iterations?", default=False, console=console):
        raw["iterations"] = IntPrompt.ask("Enter the number of iterations per VU", console=console)

    if Confirm.ask("Do you want to add a delay between iterations?", default=False, console=console):
        raw["delay_seconds"] = FloatPrompt.ask("Enter the delay time in seconds", console=console)

    if Confirm.ask("Do you want to add ramp-up stages?", default=False, console=console):
        ramp_time = Prompt.ask("Enter the ramp-up duration (e.g., 10s, 30s)", console=console)
        peak = IntPrompt.ask("Enter the peak number of Virtual Users (VUs)", console=console)
        raw["stages"] = [
            {"duration": ramp_time, "target": peak},
            {"duration": duration, "target": vus},
        ]

    return build_test_config(raw)
