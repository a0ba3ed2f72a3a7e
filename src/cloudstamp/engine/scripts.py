"""Package categories and predefined first-boot scripts."""

from typing import Dict, List


PACKAGE_CATEGORIES: Dict[str, List[str]] = {
    "essential": ["curl", "wget", "vim", "htop", "tree", "unzip"],
    "docker": ["docker.io", "docker-compose"],
    "development": ["git", "build-essential"],
    "monitoring": ["prometheus-node-exporter"],
    "security": ["fail2ban", "ufw"],
}

CATEGORY_DESCRIPTIONS: Dict[str, str] = {
    "essential": "Essential tools (curl, wget, vim, htop)",
    "docker": "Docker and Docker Compose",
    "development": "Development tools (git, build-essential)",
    "monitoring": "Monitoring agents (node-exporter)",
    "security": "Security tools (fail2ban, ufw)",
}

# Rendered with Jinja2; ``username`` is the guided cloud-init user.
BUILTIN_SCRIPTS: Dict[str, str] = {
    "docker-setup": """\
# Install Docker and Docker Compose
curl -fsSL https://get.docker.com | sh
systemctl enable docker
systemctl start docker
usermod -aG docker {{ username }}
curl -L "https://github.com/docker/compose/releases/latest/download/docker-compose-$(uname -s)-$(uname -m)" -o /usr/local/bin/docker-compose
chmod +x /usr/local/bin/docker-compose
ln -sf /usr/local/bin/docker-compose /usr/bin/docker-compose
""",
    "web-server": """\
# Install and configure Nginx
apt-get update
apt-get install -y nginx
systemctl enable nginx
systemctl start nginx
echo '<h1>Server is ready!</h1>' > /var/www/html/index.html
ufw --force enable
ufw allow ssh
ufw allow 'Nginx Full'
""",
    "security-hardening": """\
# Basic security hardening
apt-get update && apt-get install -y fail2ban ufw
ufw --force enable
ufw default deny incoming
ufw default allow outgoing
ufw allow ssh
systemctl enable fail2ban
systemctl start fail2ban
sed -i 's/#PermitRootLogin yes/PermitRootLogin no/' /etc/ssh/sshd_config
sed -i 's/#PasswordAuthentication yes/PasswordAuthentication no/' /etc/ssh/sshd_config
systemctl restart sshd
systemctl enable unattended-upgrades
""",
    "monitoring-agent": """\
# Install Node Exporter for Prometheus monitoring
apt-get update
apt-get install -y prometheus-node-exporter
systemctl enable prometheus-node-exporter
systemctl start prometheus-node-exporter
""",
    "dev-tools": """\
# Install development tools
apt-get update
apt-get install -y git vim neovim tmux htop tree curl wget build-essential
curl -fsSL https://deb.nodesource.com/setup_lts.x | bash -
apt-get install -y nodejs
apt-get install -y python3-pip python3-venv python3-dev
""",
    "auto-updates": """\
# Configure automatic updates
apt-get update
apt-get install -y unattended-upgrades
printf 'APT::Periodic::Update-Package-Lists "1";\\nAPT::Periodic::Unattended-Upgrade "1";\\n' > /etc/apt/apt.conf.d/20auto-upgrades
systemctl enable unattended-upgrades
systemctl start unattended-upgrades
""",
    "custom-user": """\
# Create additional system user
adduser --disabled-password --gecos "" deploy
usermod -aG sudo deploy
mkdir -p /home/deploy/.ssh
chmod 700 /home/deploy/.ssh
chown deploy:deploy /home/deploy/.ssh
""",
}

SCRIPT_DESCRIPTIONS: Dict[str, str] = {
    "docker-setup": "Install and configure Docker",
    "web-server": "Basic web server setup (nginx)",
    "security-hardening": "Basic security hardening",
    "monitoring-agent": "Install monitoring agents",
    "dev-tools": "Development tools setup",
    "auto-updates": "Configure automatic updates",
    "custom-user": "Create additional system user",
}
