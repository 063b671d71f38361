"""Research chat: message parts and the streaming tool loop."""
