import sys
import traceback
from pathlib import Path

from dotenv import load_dotenv

# Load .env before the configuration is read
env_path = Path(__file__).resolve().parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def _unhandled_exception(exc_type, exc_value, exc_tb):
    """Print unhandled exceptions before the process exits."""
    if exc_type is KeyboardInterrupt:
        sys.__excepthook__(exc_type, exc_value, exc_tb)
        return
    msg = "".join(traceback.format_exception(exc_type, exc_value, exc_tb))
    print("Unhandled exception:\n" + msg, file=sys.stderr, flush=True)


def main() -> int:
    """Entry point for the City Lights terminal client."""
    from citylights.ui.console import LoginConsole

    sys.excepthook = _unhandled_exception
    try:
        LoginConsole().run()
    except Exception as e:
        print(f"\nFatal error: {e}", file=sys.stderr)
        traceback.print_exc(file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
