WOOCOMMERCE = 'woocommerce'
SHOPIFY = 'shopify'
GALLERY_STORE = 'gallery_store'

PLATFORMS = (WOOCOMMERCE, SHOPIFY, GALLERY_STORE)

PLATFORM_CHOICES = [
    (WOOCOMMERCE, 'WooCommerce'),
    (SHOPIFY, 'Shopify'),
    (GALLERY_STORE, 'Gallery store'),
]
