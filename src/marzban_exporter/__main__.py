from marzban_exporter.cli import main

main()
