from native_bridge.runner import main

main()
