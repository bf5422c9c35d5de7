from epupp_bridge import main

if __name__ == "__main__":
    raise SystemExit(main())
