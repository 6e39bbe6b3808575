"""
imupose — phone IMU -> 6-DoF pose pipeline

Modules
-------
packets    Wire format of the sensor records
framer     JSON record framing of the raw sensor stream
relay      Fan-out of framed records to WebSocket clients
sources    termux-sensor / serial byte sources
estimator  Dead-reckoning orientation + position estimator
config     Tunables and process settings
server     Phone-side relay process
receiver   Desktop-side pose receiver
"""
