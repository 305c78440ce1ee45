from dejackpot.main import main

raise SystemExit(main())
