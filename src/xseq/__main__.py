"""Command-line interface for xseq.

Usage:
    python -m xseq run --mutations M.tsv --expression E.tsv [options]
    python -m xseq run --help
    python -m xseq version
"""

import sys


def main():
    """Main CLI entry point."""
    if len(sys.argv) < 2:
        print(__doc__)
        print("\nAvailable commands:")
        print("  run           Estimate functional mutation posteriors")
        print("  version       Print the installed version")
        return 1

    command = sys.argv[1]

    if command == "run":
        from xseq.analysis import main as run_main

        return run_main(sys.argv[2:])

    elif command == "version":
        from xseq import __version__

        print(__version__)
        return 0

    else:
        print(f"Unknown command: {command}")
        print(__doc__)
        return 1


if __name__ == "__main__":
    sys.exit(main())
