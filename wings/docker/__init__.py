"""Resource usage calculations and polling for Docker containers."""