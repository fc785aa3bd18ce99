from eth_rpc_proxy.main import main

main()
