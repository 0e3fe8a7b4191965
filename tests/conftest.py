import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

SAMPLE = """# Generated by iptables-save v1.8.7 on Mon Oct 19 10:00:00 2026
*filter
:INPUT DROP [120:9600]
:FORWARD ACCEPT [0:0]
:OUTPUT ACCEPT [5000:400000]
:BLOCKLIST - [0:0]
[10:600] -A INPUT -i lo -j ACCEPT
[300:24000] -A INPUT -p tcp -m tcp --dport 22 -j ACCEPT
[7:420] -A INPUT -j BLOCKLIST
[3:180] -A BLOCKLIST -s 203.0.113.7/32 -j DROP
[4:240] -A BLOCKLIST -s 198.51.100.9/32 -j DROP
COMMIT
# Completed on Mon Oct 19 10:00:00 2026
*nat
:PREROUTING ACCEPT [50:3000]
:POSTROUTING ACCEPT [60:3600]
[8:480] -A POSTROUTING -o eth0 -j MASQUERADE
COMMIT
"""


@pytest.fixture
def sample():
    return SAMPLE
