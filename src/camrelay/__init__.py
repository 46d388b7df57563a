"""camrelay: relay live camera feeds from the device API to browsers as HLS."""
