"""Allow ``python -m itemflow``."""

from itemflow.ui.cli import cli_entrypoint

if __name__ == "__main__":
    cli_entrypoint()
