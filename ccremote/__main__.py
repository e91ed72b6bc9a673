from ccremote.cli import main

raise SystemExit(main())
