from repo_packer.cli import main

raise SystemExit(main())
