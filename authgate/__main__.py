from authgate.app import main

main()
