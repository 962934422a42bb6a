from komikcast.app import main

main()
