"""
Test package for awt.

- unit/: tests for individual modules
- integration/: lifecycle and handoff scenarios against real git repositories
- cli/: command-line tests through typer's CliRunner
"""
