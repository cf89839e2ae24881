from .cli import cli

if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(cli())
