from semantic_rag.cli import main

main()
