"""`python -m toolsmith` runs the same CLI as the `toolsmith` script."""

from toolsmith.app.main import main

raise SystemExit(main())
