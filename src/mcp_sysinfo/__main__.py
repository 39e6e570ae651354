from mcp_sysinfo.cli import main

main()
