"""Access control rules and the engine that applies them."""