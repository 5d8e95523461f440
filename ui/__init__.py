"""Terminal UI: InquirerPy menus and prompts, rich spinners and progress bars."""
