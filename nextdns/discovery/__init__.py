"""Sources that map LAN client addresses, MAC addresses and host names, and a resolver that chains them."""