"""GuardedAgent launcher (delegates to guardedAgent.main)."""

from guardedAgent.main import main

if __name__ == "__main__":
    main()
