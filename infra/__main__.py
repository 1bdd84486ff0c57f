"""To-do application infrastructure - Pulumi entry point."""

from moraine.program import run

run()
