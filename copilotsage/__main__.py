from copilotsage.sage import main

main()
