from __future__ import annotations

import argparse
import os

from .app import DEFAULT_DATABASE_PATH, create_form_engine_app


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the form rules service")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--db", default=os.environ.get("FORM_RULES_DB_PATH", DEFAULT_DATABASE_PATH))
    args = parser.parse_args()

    app = create_form_engine_app(args.db)
    app.run(host=args.host, port=args.port, debug=False)


if __name__ == "__main__":
    main()
