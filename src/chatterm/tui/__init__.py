"""Terminal front ends for chatterm: the Textual app and the headless driver."""
