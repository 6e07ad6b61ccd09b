"""Fixed-rate congestion control and token-bucket pacing."""