from psnbench.cli import main

raise SystemExit(main())
